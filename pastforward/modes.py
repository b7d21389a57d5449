"""Creative mode definitions and task construction."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Tuple

import yaml

from .core.scheduler import GenerationTask

SINGLE = "single"
MULTI = "multi"

DECADES = ("1950s", "1960s", "1970s", "1980s", "1990s", "2000s")
MAGAZINES = ("Vogue", "Time", "Rolling Stone", "National Geographic", "Vanity Fair", "Life")


@dataclass(frozen=True)
class Mode:
    id: str
    kind: str
    title: str
    description: str = ""
    prompt: str | None = None
    prompts: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    album_title: str | None = None
    album_subtitle: str | None = None
    album_filename: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in (SINGLE, MULTI):
            raise ValueError(f"Mode {self.id!r} has unknown kind {self.kind!r}")
        if self.kind == SINGLE and not self.prompt:
            raise ValueError(f"Single-image mode {self.id!r} needs a prompt")
        if self.kind == MULTI:
            if not self.prompts:
                raise ValueError(f"Multi-image mode {self.id!r} needs at least one prompt")
            keys = [key for key, _ in self.prompts]
            if len(set(keys)) != len(keys):
                raise ValueError(f"Multi-image mode {self.id!r} declares duplicate keys")
            if any(not prompt for _, prompt in self.prompts):
                raise ValueError(f"Multi-image mode {self.id!r} has an empty prompt")

    @property
    def is_multi(self) -> bool:
        return self.kind == MULTI

    @property
    def keys(self) -> List[str]:
        if self.kind == SINGLE:
            return [self.id]
        return [key for key, _ in self.prompts]

    @property
    def prompts_by_key(self) -> Dict[str, str]:
        if self.kind == SINGLE:
            return {self.id: str(self.prompt)}
        return dict(self.prompts)

    def prompt_for(self, key: str) -> str:
        try:
            return self.prompts_by_key[key]
        except KeyError:
            raise KeyError(f"Mode {self.id!r} has no prompt for key {key!r}") from None

    @property
    def album_name(self) -> str:
        return self.album_filename or f"{self.id}-album.jpg"


def _decade_prompt(decade: str) -> str:
    return (
        f"Reimagine the person in this photo in the style of the {decade}. This includes "
        f"the clothing, hairstyle, photo quality and overall aesthetic of that decade. "
        f"The output must be a clear, photorealistic photograph."
    )


def _magazine_prompt(magazine: str) -> str:
    return (
        f"Turn this photo into a cover of {magazine} magazine. Keep the person's likeness, "
        f"restyle lighting, wardrobe and typography to match the magazine's signature cover "
        f"look, and render the masthead. The output must be a clean, high-resolution cover."
    )


BUILTIN_MODES: Tuple[Mode, ...] = (
    Mode(
        id="time-travel",
        kind=MULTI,
        title="Polaroid Time Travel",
        description="See yourself across the decades.",
        prompts=tuple((decade, _decade_prompt(decade)) for decade in DECADES),
        album_title="Past Forward",
        album_subtitle="Generated across the decades",
        album_filename="past-forward-album.jpg",
    ),
    Mode(
        id="magazine-cover",
        kind=MULTI,
        title="Cover Star",
        description="Land on the cover of six iconic magazines.",
        prompts=tuple((magazine, _magazine_prompt(magazine)) for magazine in MAGAZINES),
        album_title="Cover Star",
        album_subtitle="Six covers, one face",
        album_filename="cover-star-album.jpg",
    ),
    Mode(
        id="portrait-art",
        kind=SINGLE,
        title="Black & White Portrait",
        description="A high-resolution black and white art portrait.",
        prompt=(
            "Using the uploaded image, create a high-resolution black and white portrait in an "
            "editorial, fine-art photography style. The background is a soft gradient from mid "
            "grey to near white, with gentle depth and film grain."
        ),
    ),
    Mode(
        id="knitted-doll",
        kind=SINGLE,
        title="Knitted Doll",
        description="Turn your photo into a cute crocheted doll.",
        prompt=(
            "A close-up, professionally composed photo of a handmade crocheted yarn doll held "
            "gently in two hands. The doll is a rounded, chibi version of the person in the "
            "uploaded image, with vivid contrasting colours and rich stitch detail."
        ),
    ),
    Mode(
        id="davinci-sketch",
        kind=SINGLE,
        title="Da Vinci Sketch",
        description="Render your photo as a Leonardo da Vinci study.",
        prompt="Convert this image into the style of a Leonardo da Vinci hand-drawn sketch.",
    ),
    Mode(
        id="double-exposure",
        kind=SINGLE,
        title="Double Exposure",
        description="Blend your profile with a city skyline.",
        prompt=(
            "Based on the person in the uploaded image: show only their side profile, blended "
            "with a city skyline silhouette as a multiple exposure, black and white with light "
            "colour washes, perfectly overlapping."
        ),
    ),
    Mode(
        id="black-gold",
        kind=SINGLE,
        title="Black Gold Studio",
        description="A mysterious side silhouette sculpted by light on pure black.",
        prompt=(
            "Based on the person in the uploaded image: pure black background, side-on "
            "composition, an artistic and mysterious silhouette of the person, with warm golden "
            "rim light tracing the hair and profile."
        ),
    ),
)


def _mode_from_mapping(data: Mapping[str, Any]) -> Mode:
    raw_prompts = data.get("prompts") or {}
    if isinstance(raw_prompts, Mapping):
        prompts = tuple((str(key), str(value)) for key, value in raw_prompts.items())
    elif isinstance(raw_prompts, list):
        prompts = tuple(
            (str(item.get("key")), str(item.get("prompt") or ""))
            for item in raw_prompts
            if isinstance(item, Mapping)
        )
    else:
        raise ValueError(f"Mode {data.get('id')!r}: prompts must be a mapping or a list")
    return Mode(
        id=str(data["id"]),
        kind=str(data.get("kind", MULTI if prompts else SINGLE)),
        title=str(data.get("title") or data["id"]),
        description=str(data.get("description") or ""),
        prompt=data.get("prompt"),
        prompts=prompts,
        album_title=data.get("album_title"),
        album_subtitle=data.get("album_subtitle"),
        album_filename=data.get("album_filename"),
    )


def load_modes(path: str | Path) -> List[Mode]:
    """Read additional modes from a YAML file with a top-level ``modes`` list."""

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Modes file not found: {file_path}")
    data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    entries = data.get("modes") if isinstance(data, MutableMapping) else data
    if not isinstance(entries, list):
        raise ValueError("Modes file must contain a list of modes")
    modes: List[Mode] = []
    for entry in entries:
        if not isinstance(entry, Mapping) or not entry.get("id"):
            raise ValueError("Every mode needs an 'id'")
        modes.append(_mode_from_mapping(entry))
    return modes


def mode_catalogue(extra: Iterable[Mode] = ()) -> Dict[str, Mode]:
    catalogue = {mode.id: mode for mode in BUILTIN_MODES}
    for mode in extra:
        catalogue[mode.id] = mode
    return catalogue


def get_mode(mode_id: str, catalogue: Mapping[str, Mode] | None = None) -> Mode:
    modes = catalogue if catalogue is not None else mode_catalogue()
    try:
        return modes[mode_id]
    except KeyError:
        known = ", ".join(sorted(modes))
        raise KeyError(f"Unknown mode {mode_id!r}; available: {known}") from None


def build_tasks(mode: Mode, source_image: bytes) -> List[GenerationTask]:
    return [
        GenerationTask(key=key, source_image=source_image, prompt=prompt)
        for key, prompt in mode.prompts_by_key.items()
    ]


__all__ = [
    "BUILTIN_MODES",
    "DECADES",
    "MAGAZINES",
    "MULTI",
    "Mode",
    "SINGLE",
    "build_tasks",
    "get_mode",
    "load_modes",
    "mode_catalogue",
]
