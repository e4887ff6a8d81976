"""Interactive toggle list for choosing which patches to apply."""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Sequence, Set

import typer

from .catalog import FeaturePatch, PatchSet, StandalonePatch

_SPLIT = re.compile(r"[\s,]+")

PromptFn = Callable[[], str]
EchoFn = Callable[[str], None]


def default_selection(patches: Sequence[FeaturePatch | StandalonePatch]) -> Set[int]:
    return {index for index, patch in enumerate(patches) if patch.recommended}


def apply_selection_input(selected: Set[int], text: str, size: int) -> tuple[Set[int], bool]:
    """Apply one line of input to ``selected``.

    Returns the new selection and whether the input confirmed it. ``a``
    selects everything, ``n`` clears, numbers (1-based, space or comma
    separated) toggle; out-of-range or non-numeric tokens are ignored.
    """
    command = text.strip().lower()
    if not command:
        return set(selected), True
    if command == "a":
        return set(range(size)), False
    if command == "n":
        return set(), False

    updated = set(selected)
    for token in _SPLIT.split(command):
        if not token.isdigit():
            continue
        index = int(token) - 1
        if 0 <= index < size:
            updated ^= {index}
    return updated, False


def render_selection(patches: Sequence[FeaturePatch | StandalonePatch], selected: Set[int]) -> List[str]:
    lines: List[str] = []
    for index, patch in enumerate(patches):
        check = "[x]" if index in selected else "[ ]"
        recommended = " (recommended)" if patch.recommended else ""
        lines.append(f"  {index + 1}. {check} {patch.name}{recommended}")
        lines.append("      " + typer.style(patch.description, dim=True))
    lines.append("")
    lines.append("  Enter numbers to toggle, 'a' for all, 'n' for none, or press Enter to confirm")
    return lines


def prompt_selection(
    patches: Sequence[FeaturePatch | StandalonePatch],
    message: str = "Select patches to apply:",
    *,
    prompt: PromptFn | None = None,
    echo: EchoFn = typer.echo,
) -> PatchSet:
    """Loop until the user confirms, then return the chosen patches in catalog order."""
    read = prompt or (lambda: typer.prompt(">", default="", show_default=False))
    selected = default_selection(patches)

    def _show() -> None:
        echo(f"\n{message}")
        for line in render_selection(patches, selected):
            echo(line)

    _show()
    while True:
        selected, confirmed = apply_selection_input(selected, read(), len(patches))
        if confirmed:
            break
        _show()

    return PatchSet(patch for index, patch in enumerate(patches) if index in selected)


def selection_from_names(names: Iterable[str], patches: Sequence[FeaturePatch | StandalonePatch]) -> PatchSet:
    """Non-interactive selection; keeps catalog order regardless of ``names`` order."""
    wanted = list(dict.fromkeys(names))
    known = {patch.name for patch in patches}
    unknown = [name for name in wanted if name not in known]
    if unknown:
        raise KeyError(f"Unknown patch(es): {', '.join(unknown)}")
    return PatchSet(patch for patch in patches if patch.name in wanted)


__all__ = [
    "apply_selection_input",
    "default_selection",
    "prompt_selection",
    "render_selection",
    "selection_from_names",
]
