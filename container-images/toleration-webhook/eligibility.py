from collections.abc import Iterable, Mapping
from enum import StrEnum

# Annotations are bare "status" and "inject" unless a prefix is configured.
DEFAULT_ANNOTATION_PREFIX = ""

INJECTED = "injected"

# Values of the inject annotation that opt an object out of mutation.
NEGATIVE_TOKENS = frozenset({"n", "no", "false", "off"})


class InjectionState(StrEnum):
    REQUIRED = "required"
    INJECTED = "injected"
    SUPPRESSED = "suppressed"


def annotation_key(name: str, prefix: str = DEFAULT_ANNOTATION_PREFIX) -> str:
    return f"{prefix}/{name}" if prefix else name


def injection_state(
    annotations: Mapping[str, str] | None, prefix: str = DEFAULT_ANNOTATION_PREFIX
) -> InjectionState:
    """Derive the injection state of an object from its annotations.

    A status of "injected" wins over everything else. An inject annotation
    carrying one of the negative tokens suppresses mutation. Anything else,
    including missing or unrecognized values, means mutation is required.
    """

    annotations = annotations or {}

    status = annotations.get(annotation_key("status", prefix))
    if status is not None and status.lower() == INJECTED:
        return InjectionState.INJECTED

    inject = annotations.get(annotation_key("inject", prefix))
    if inject is not None and inject.lower() in NEGATIVE_TOKENS:
        return InjectionState.SUPPRESSED

    return InjectionState.REQUIRED


def evaluate(
    namespace: str,
    annotations: Mapping[str, str] | None,
    excluded_namespaces: Iterable[str],
    prefix: str = DEFAULT_ANNOTATION_PREFIX,
) -> bool:
    """Return True if an object in `namespace` with `annotations` should be mutated."""

    if namespace in excluded_namespaces:
        return False

    return injection_state(annotations, prefix) is InjectionState.REQUIRED
