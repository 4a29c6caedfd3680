from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class ImagePlacement:
    data_url: str
    width: float
    height: float
    x: float
    y: float

    def to_dict(self):
        return OrderedDict([
            ("dataUrl", self.data_url), ("width", self.width), ("height", self.height),
            ("x", self.x), ("y", self.y),
        ])


@dataclass
class Page:
    """One reconstructed page.

    `content` is the HTML produced at load time and is never edited in place;
    `edited_content` supersedes it for display and export once set.
    """
    content: str
    width: float
    height: float
    scale: float = 1.0
    images: List[ImagePlacement] = field(default_factory=list)
    edited_content: Optional[str] = None

    @property
    def display_content(self) -> str:
        return self.content if self.edited_content is None else self.edited_content

    def to_dict(self):
        return OrderedDict([
            ("content", self.content),
            ("editedContent", self.edited_content),
            ("width", self.width), ("height", self.height), ("scale", self.scale),
            ("images", [img.to_dict() for img in self.images]),
        ])

    @classmethod
    def from_dict(cls, data):
        return cls(
            content=data.get("content") or "",
            edited_content=data.get("editedContent"),
            width=float(data.get("width") or 0),
            height=float(data.get("height") or 0),
            scale=float(data.get("scale") or 1.0),
            images=[ImagePlacement(img.get("dataUrl", ""), float(img.get("width", 0)), float(img.get("height", 0)),
                                   float(img.get("x", 0)), float(img.get("y", 0)))
                    for img in data.get("images") or []],
        )
