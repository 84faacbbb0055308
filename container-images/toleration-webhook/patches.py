from collections.abc import Mapping, Sequence

from models import PatchAction, PatchOp, Toleration

ANNOTATIONS_PATH = ("metadata", "annotations")


def synthesize(
    current: Sequence[Toleration],
    desired: Sequence[Toleration],
    base_path: Sequence[str],
) -> list[PatchAction]:
    """Compute the operations that add every desired toleration that is missing.

    Existing tolerations are never removed or replaced, even when they match
    a desired toleration but differ in other fields.
    """

    base_path = tuple(base_path)

    if not desired:
        return []

    # With nothing there yet, create the whole list in one operation.
    if not current:
        return [
            PatchAction(
                op=PatchOp.ADD,
                path=base_path,
                value=[toleration.as_patch_value() for toleration in desired],
            )
        ]

    present = list(current)
    actions = []
    for toleration in desired:
        if any(toleration.matches(other) for other in present):
            continue

        present.append(toleration)
        actions.append(
            PatchAction(
                op=PatchOp.ADD,
                path=base_path + ("-",),
                value=toleration.as_patch_value(),
            )
        )

    return actions


def annotate(annotations: Mapping[str, str] | None, key: str, value: str) -> PatchAction:
    """Build the operation that sets annotation `key` to `value`."""

    # Adding below /metadata/annotations fails if the map itself is missing.
    if not annotations:
        return PatchAction(op=PatchOp.ADD, path=ANNOTATIONS_PATH, value={key: value})

    return PatchAction(op=PatchOp.ADD, path=ANNOTATIONS_PATH + (key,), value=value)
