"""Typed patch descriptors and the immutable catalog they live in."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Iterable, Iterator, List, Literal, Mapping, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .config import PatchEntry, PatcherConfig
from .errors import ConfigError, PatchApplicationError

_NAME_PATTERN = re.compile(r"[A-Za-z0-9]")


class PatchModel(BaseModel):
    """Base model for patch descriptors; instances never change."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    file: str
    description: str = ""
    recommended: bool = False


class FeaturePatch(PatchModel):
    """Patch whose file-level changes may overlap another feature patch."""

    category: Literal["feature"] = "feature"


class StandalonePatch(PatchModel):
    """Patch curated to never overlap anything else."""

    category: Literal["standalone"] = "standalone"


Patch = Annotated[Union[FeaturePatch, StandalonePatch], Field(discriminator="category")]

_PATCH_ADAPTER: TypeAdapter[Patch] = TypeAdapter(Patch)


def parse_patch(data: Mapping[str, object]) -> FeaturePatch | StandalonePatch:
    """Build the right patch variant from a mapping carrying ``category``."""
    return _PATCH_ADAPTER.validate_python(dict(data))


class PatchSet(Sequence[Union[FeaturePatch, StandalonePatch]]):
    """Ordered, duplicate-free selection of patches for one application attempt."""

    __slots__ = ("_patches",)

    def __init__(self, patches: Iterable[FeaturePatch | StandalonePatch] = ()) -> None:
        ordered: list[FeaturePatch | StandalonePatch] = []
        seen: set[str] = set()
        for patch in patches:
            if patch.name in seen:
                raise ValueError(f"Duplicate patch in selection: {patch.name}")
            seen.add(patch.name)
            ordered.append(patch)
        self._patches: Tuple[FeaturePatch | StandalonePatch, ...] = tuple(ordered)

    def __getitem__(self, index):  # type: ignore[override]
        return self._patches[index]

    def __len__(self) -> int:
        return len(self._patches)

    def __iter__(self) -> Iterator[FeaturePatch | StandalonePatch]:
        return iter(self._patches)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PatchSet):
            return self._patches == other._patches
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._patches)

    def __repr__(self) -> str:
        return f"PatchSet({list(self.names)!r})"

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(patch.name for patch in self._patches)

    @property
    def features(self) -> Tuple[FeaturePatch, ...]:
        return tuple(patch for patch in self._patches if isinstance(patch, FeaturePatch))

    @property
    def standalone(self) -> Tuple[StandalonePatch, ...]:
        return tuple(patch for patch in self._patches if isinstance(patch, StandalonePatch))

    def label(self, separator: str = " + ") -> str:
        return separator.join(self.names)


class PatchCatalog:
    """Registry of every available patch, built once and then read-only.

    ``patches`` lists feature patches first and standalone patches second;
    that order fixes which bit each patch occupies during combination tests.
    """

    __slots__ = ("_features", "_standalone", "_by_name", "_patches_dir")

    def __init__(
        self,
        features: Iterable[FeaturePatch],
        standalone: Iterable[StandalonePatch],
        *,
        patches_dir: Path | str,
    ) -> None:
        features = tuple(features)
        standalone = tuple(standalone)
        by_name: dict[str, FeaturePatch | StandalonePatch] = {}
        for patch in (*features, *standalone):
            if not _NAME_PATTERN.search(patch.name):
                raise ConfigError(f"Patch name must contain a letter or digit: {patch.name!r}")
            if patch.name in by_name:
                raise ConfigError(f"Duplicate patch name in catalog: {patch.name}")
            by_name[patch.name] = patch
        for patch in features:
            if not isinstance(patch, FeaturePatch):
                raise ConfigError(f"{patch.name} is listed as a feature but is {patch.category}")
        for patch in standalone:
            if not isinstance(patch, StandalonePatch):
                raise ConfigError(f"{patch.name} is listed as standalone but is {patch.category}")

        self._features: Tuple[FeaturePatch, ...] = features
        self._standalone: Tuple[StandalonePatch, ...] = standalone
        self._by_name = by_name
        self._patches_dir = Path(patches_dir).resolve()

    @classmethod
    def from_config(cls, config: PatcherConfig) -> "PatchCatalog":
        return cls(
            (_entry_to_patch(entry, "feature") for entry in config.patches.feature),
            (_entry_to_patch(entry, "standalone") for entry in config.patches.standalone),
            patches_dir=config.patches_dir,
        )

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[FeaturePatch | StandalonePatch]:
        return iter(self.patches)

    @property
    def patches_dir(self) -> Path:
        return self._patches_dir

    @property
    def features(self) -> Tuple[FeaturePatch, ...]:
        return self._features

    @property
    def standalone(self) -> Tuple[StandalonePatch, ...]:
        return self._standalone

    @property
    def patches(self) -> Tuple[FeaturePatch | StandalonePatch, ...]:
        return (*self._features, *self._standalone)

    def names(self) -> Tuple[str, ...]:
        return tuple(patch.name for patch in self.patches)

    def get(self, name: str) -> FeaturePatch | StandalonePatch:
        try:
            return self._by_name[name]
        except KeyError:
            known = ", ".join(self.names()) or "none"
            raise KeyError(f"Unknown patch {name!r} (known: {known})") from None

    def select(self, names: Iterable[str]) -> PatchSet:
        """Return a :class:`PatchSet` for ``names`` in the order given."""
        return PatchSet(self.get(name) for name in names)

    def path_for(self, patch: FeaturePatch | StandalonePatch) -> Path:
        return self._patches_dir / patch.file

    def missing_files(self, patches: Iterable[FeaturePatch | StandalonePatch] | None = None) -> List[Path]:
        """Return the patch files of ``patches`` (default: all) that do not exist."""
        chosen = self.patches if patches is None else patches
        return [path for path in map(self.path_for, chosen) if not path.is_file()]

    def read(self, patch: FeaturePatch | StandalonePatch) -> str:
        """Return the diff text of ``patch``."""
        path = self.path_for(patch)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as error:
            raise PatchApplicationError(patch.name, f"patch file not found: {path}") from error
        except (OSError, UnicodeDecodeError) as error:
            raise PatchApplicationError(patch.name, f"unable to read {path}: {error}") from error


def _entry_to_patch(entry: PatchEntry, category: str) -> FeaturePatch | StandalonePatch:
    return parse_patch({**entry.model_dump(), "category": category})


__all__ = [
    "FeaturePatch",
    "Patch",
    "PatchCatalog",
    "PatchSet",
    "StandalonePatch",
    "parse_patch",
]
