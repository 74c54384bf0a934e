"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and CLI command wrappers
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import logging
import typer
from typing import Callable, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)

# Exit code mapping, keyed by exception class name
EXIT_CODES = {
    "NotFoundError": 1,
    "FileNotFoundError": 1,
    "ParseError": 2,
    "ValidationError": 2,
    "ValueError": 2,
    "RegistryError": 3,
    "DigestMismatch": 3,
    "AuthError": 4,
    "CacheIOError": 5,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns:
    - 1: Manifest, blob or input file not found
    - 2: Malformed reference, descriptor or manifest
    - 3: Registry or network error, or unknown error
    - 4: Credential lookup failure
    - 5: Local cache filesystem failure

    Args:
        exc: Exception to map

    Returns:
        Exit code (1-5, with 3 as fallback for unknown exceptions)
    """
    return EXIT_CODES.get(type(exc).__name__, 3)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit, printing the error message to stderr.

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=exit_code_for(e)) from e
