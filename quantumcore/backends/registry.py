"""
Backend selection.

The set of in-process backends is closed, so the kind is an enum resolved
once into a backend object; algorithm code only ever sees BackendBase.
"""

from enum import Enum
from typing import Optional, Union
import logging

from quantumcore.backends.backend_base import BackendBase
from quantumcore.config import settings
from quantumcore.exceptions import InvalidArgumentError
from quantumcore.simulator.statevector import StatevectorEngine

logger = logging.getLogger(__name__)


class BackendKind(Enum):
    LOCAL = "local"
    PENNYLANE = "pennylane"


def create_backend(
    kind: Union[BackendKind, str, None] = None,
    engine: Optional[StatevectorEngine] = None
) -> BackendBase:
    """
    Build a backend of the requested kind.

    Args:
        kind: BackendKind or its string value (default: settings.simulator.backend)
        engine: Statevector engine to share (default: one built from settings)

    Returns:
        Concrete BackendBase instance

    Raises:
        InvalidArgumentError: If kind is unknown
    """
    if kind is None:
        kind = settings.simulator.backend
    if isinstance(kind, str):
        try:
            kind = BackendKind(kind.lower())
        except ValueError:
            valid = [k.value for k in BackendKind]
            raise InvalidArgumentError(f"Unknown backend kind '{kind}'. Valid: {valid}")

    if kind == BackendKind.LOCAL:
        from quantumcore.backends.local_backend import LocalBackend
        return LocalBackend(engine=engine)
    if kind == BackendKind.PENNYLANE:
        from quantumcore.backends.pennylane_backend import PennyLaneBackend
        return PennyLaneBackend(engine=engine)

    raise InvalidArgumentError(f"Unsupported backend kind: {kind!r}")


def resolve_backend(backend: Union[BackendBase, BackendKind, str, None]) -> BackendBase:
    """Pass a BackendBase through; build one for anything else."""
    if isinstance(backend, BackendBase):
        return backend
    return create_backend(backend)
