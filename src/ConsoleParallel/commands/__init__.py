"""Commands shipped with ``python -m ConsoleParallel``."""
