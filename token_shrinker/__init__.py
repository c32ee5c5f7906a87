"""TokenShrinker: incremental file summarization for token-efficient AI tooling."""

__version__ = "1.0.0"
