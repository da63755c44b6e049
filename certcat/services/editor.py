"""Direct-manipulation template editor.

The editor owns an ordered element list (later entries draw on top) and a
bounded undo history of settled states.  Dragging converts absolute
pointer positions to canvas percentages on every move, so repeated move
events never accumulate error.
"""

from __future__ import annotations

import json
import time
from copy import deepcopy
from typing import Callable

from ..shared.coordinates import clamp_percent, scale_for_width
from ..shared.elements import (
    DEFAULT_QR_SIZE,
    sanitize_element,
    sanitize_elements,
    sanitize_settings,
    to_number,
    to_positive,
)
from ..shared.layout import Placement, layout

SNAP_THRESHOLD = 2.0
SNAP_CENTER = 50.0
SNAP_RELEASE_DELAY = 0.3
HISTORY_LIMIT = 50
DUPLICATE_OFFSET = 3.0
DUPLICATE_MAX = 95.0
NEW_IMAGE_WIDTH = 120

UPLOAD_LIMITS = {
    "background": 2 * 1024 * 1024,
    "element": 1 * 1024 * 1024,
}

NEW_TEXT_DEFAULTS = {
    "value": "{name}",
    "fontSize": 40,
    "fontFamily": "Poppins",
    "fontWeight": "normal",
    "fontStyle": "normal",
    "color": "#000000",
    "letterSpacing": 0,
}

LAYER_DIRECTIONS = ("forward", "back")


class UploadError(ValueError):
    """An upload was rejected or the storage provider failed."""


def check_upload(kind: str, size_bytes: int) -> None:
    limit = UPLOAD_LIMITS.get(kind)
    if limit is None:
        raise UploadError(f"Unknown upload kind: {kind!r}")
    if size_bytes > limit:
        raise UploadError(
            f"File too large ({size_bytes / 1024 / 1024:.1f} MB). "
            f"Maximum size is {limit // (1024 * 1024)} MB."
        )


class EditorSession:
    def __init__(
        self,
        elements: list[dict] | None = None,
        *,
        background_url: str | None = None,
        name: str = "",
        settings: dict | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.clock = clock
        self.background_url = background_url
        self.name = name
        self.settings = sanitize_settings(settings)
        self.elements: list[dict] = sanitize_elements(elements)
        self.selected: int | None = None
        self.upload_error: str | None = None
        self.snap_x = False
        self.snap_y = False
        self._snap_release_at: float | None = None
        self._drag: dict | None = None
        self._replaying = False
        self.history: list[str] = []
        self.cursor = -1
        self._record()

    # history

    def _record(self) -> None:
        if self._replaying:
            return
        snapshot = json.dumps(self.elements, sort_keys=True)
        if self.cursor >= 0 and self.history[self.cursor] == snapshot:
            return
        self.history = self.history[: self.cursor + 1]
        self.history.append(snapshot)
        if len(self.history) > HISTORY_LIMIT:
            self.history.pop(0)
        self.cursor = len(self.history) - 1

    def _commit(self, elements: list[dict]) -> None:
        self.elements = elements
        self._record()

    def _restore(self, cursor: int) -> None:
        self._replaying = True
        try:
            self.cursor = cursor
            self._commit(json.loads(self.history[cursor]))
        finally:
            self._replaying = False
        self.selected = None
        self._drag = None

    @property
    def can_undo(self) -> bool:
        return self.cursor > 0

    @property
    def can_redo(self) -> bool:
        return self.cursor < len(self.history) - 1

    def undo(self) -> bool:
        if not self.can_undo:
            return False
        self._restore(self.cursor - 1)
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        self._restore(self.cursor + 1)
        return True

    # element operations

    def _check_index(self, index: int) -> int:
        if not isinstance(index, int) or not 0 <= index < len(self.elements):
            raise IndexError(f"No element at index {index!r}")
        return index

    def _append(self, raw: dict) -> int:
        element = sanitize_element(raw, len(self.elements))
        if element is None:
            raise ValueError("Unsupported element")
        self._commit([*deepcopy(self.elements), element])
        self.selected = len(self.elements) - 1
        return self.selected

    def add_text(self, preset: dict | None = None) -> int:
        raw = {"type": "text", "x": 50, "y": 50, **NEW_TEXT_DEFAULTS, **(preset or {})}
        raw.update(
            {"opacity": 100, "locked": False, "visible": True,
             "name": f"Text {len(self.elements) + 1}"}
        )
        return self._append(raw)

    def add_qrcode(self) -> int:
        return self._append(
            {
                "type": "qrcode",
                "value": "{qr}",
                "x": 85,
                "y": 85,
                "size": self.settings.get("qrCodeSize", DEFAULT_QR_SIZE),
                "opacity": 100,
                "locked": False,
                "visible": True,
                "name": "QR Code",
            }
        )

    def add_image(self, src: str, aspect_ratio: float | None = None) -> int:
        ratio = to_number(aspect_ratio, 0.0)
        width = NEW_IMAGE_WIDTH
        height = round(width / ratio) if ratio > 0 else width
        raw = {
            "type": "image",
            "src": src,
            "x": 50,
            "y": 50,
            "width": width,
            "height": height,
            "opacity": 100,
            "locked": False,
            "visible": True,
            "name": f"Image {len(self.elements) + 1}",
        }
        if ratio > 0:
            raw["aspectRatio"] = ratio
        return self._append(raw)

    def update(self, index: int, changes: dict) -> dict:
        index = self._check_index(index)
        changes = dict(changes)
        current = deepcopy(self.elements[index])
        changes.pop("type", None)
        ratio = to_number(current.get("aspectRatio"), 0.0)
        if current["type"] == "image" and ratio > 0:
            if "width" in changes and "height" not in changes:
                width = to_positive(changes["width"], current["width"])
                changes["height"] = round(width / ratio)
            elif "height" in changes and "width" not in changes:
                height = to_positive(changes["height"], current["height"])
                changes["width"] = round(height * ratio)
        current.update(changes)
        element = sanitize_element(current, index)
        elements = deepcopy(self.elements)
        elements[index] = element
        self._commit(elements)
        return element

    def delete(self, index: int) -> None:
        index = self._check_index(index)
        self._commit([el for i, el in enumerate(deepcopy(self.elements)) if i != index])
        self.selected = None

    def duplicate(self, index: int) -> int:
        index = self._check_index(index)
        copy = deepcopy(self.elements[index])
        copy["x"] = min(copy["x"] + DUPLICATE_OFFSET, DUPLICATE_MAX)
        copy["y"] = min(copy["y"] + DUPLICATE_OFFSET, DUPLICATE_MAX)
        copy["name"] = f"{copy.get('name') or 'Element'} (copy)"
        self._commit([*deepcopy(self.elements), copy])
        self.selected = len(self.elements) - 1
        return self.selected

    def move_layer(self, index: int, direction: str) -> int:
        """Swap with the neighbour in ``direction``; the top is the last index."""
        index = self._check_index(index)
        if direction not in LAYER_DIRECTIONS:
            raise ValueError(f"Unknown layer direction: {direction!r}")
        target = index + 1 if direction == "forward" else index - 1
        if target < 0 or target >= len(self.elements):
            return index
        elements = deepcopy(self.elements)
        elements[index], elements[target] = elements[target], elements[index]
        self._commit(elements)
        self.selected = target
        return target

    def set_background(self, url: str) -> None:
        self.background_url = url
        self.upload_error = None

    def update_settings(self, settings: dict) -> None:
        self.settings = sanitize_settings({**self.settings, **(settings or {})})

    # uploads

    def apply_upload(
        self,
        kind: str,
        *,
        url: str | None = None,
        size_bytes: int = 0,
        aspect_ratio: float | None = None,
        error: str | None = None,
    ) -> bool:
        """Apply the outcome of an external upload.

        Any failure becomes ``upload_error`` and leaves the elements as
        they were.
        """
        try:
            if error:
                raise UploadError(error)
            check_upload(kind, size_bytes)
            if not url:
                raise UploadError("Upload failed")
        except UploadError as exc:
            self.upload_error = str(exc)
            return False
        self.upload_error = None
        if kind == "background":
            self.set_background(url)
        else:
            self.add_image(url, aspect_ratio)
        return True

    def dismiss_error(self) -> None:
        self.upload_error = None

    # dragging

    @property
    def dragging(self) -> int | None:
        return self._drag["index"] if self._drag else None

    def begin_drag(
        self, index: int, pointer_x: float, pointer_y: float,
        surface_width: float, surface_height: float,
    ) -> bool:
        index = self._check_index(index)
        self.selected = index
        element = self.elements[index]
        if element.get("locked"):
            return False
        px = pointer_x / surface_width * 100.0
        py = pointer_y / surface_height * 100.0
        self._drag = {
            "index": index,
            "offsetX": px - element["x"],
            "offsetY": py - element["y"],
            "startX": element["x"],
            "startY": element["y"],
        }
        self._snap_release_at = None
        return True

    def drag_to(
        self, pointer_x: float, pointer_y: float,
        surface_width: float, surface_height: float,
    ) -> tuple[float, float] | None:
        if not self._drag:
            return None
        x = clamp_percent(pointer_x / surface_width * 100.0 - self._drag["offsetX"])
        y = clamp_percent(pointer_y / surface_height * 100.0 - self._drag["offsetY"])
        self.snap_x = abs(x - SNAP_CENTER) < SNAP_THRESHOLD
        self.snap_y = abs(y - SNAP_CENTER) < SNAP_THRESHOLD
        if self.snap_x:
            x = SNAP_CENTER
        if self.snap_y:
            y = SNAP_CENTER
        element = self.elements[self._drag["index"]]
        element["x"] = x
        element["y"] = y
        return x, y

    def end_drag(self) -> None:
        if not self._drag:
            return
        element = self.elements[self._drag["index"]]
        moved = (element["x"], element["y"]) != (self._drag["startX"], self._drag["startY"])
        self._drag = None
        self._snap_release_at = self.clock() + SNAP_RELEASE_DELAY
        if moved:
            self._record()

    def snap_indicator(self) -> tuple[bool, bool]:
        if self._snap_release_at is not None and self.clock() >= self._snap_release_at:
            self.snap_x = self.snap_y = False
            self._snap_release_at = None
        return self.snap_x, self.snap_y

    # rendering

    def geometry(self, surface_width: float) -> list[Placement]:
        scale = scale_for_width(surface_width)
        placements = []
        for index, element in enumerate(self.elements):
            if element.get("visible") is False:
                continue
            geom = layout(element, scale)
            placements.append(Placement(index, element["type"], geom.center_x, geom.center_y))
        return placements

    # persistence

    def to_state(self) -> dict:
        return {
            "elements": deepcopy(self.elements),
            "history": list(self.history),
            "cursor": self.cursor,
            "background": self.background_url,
            "name": self.name,
            "settings": dict(self.settings),
            "selected": self.selected,
            "uploadError": self.upload_error,
            "snap": {"x": self.snap_x, "y": self.snap_y, "releaseAt": self._snap_release_at},
            "drag": deepcopy(self._drag),
        }

    @classmethod
    def from_state(cls, state: dict | None, clock: Callable[[], float] = time.time):
        state = state or {}
        session = cls(
            state.get("elements"),
            background_url=state.get("background"),
            name=state.get("name") or "",
            settings=state.get("settings"),
            clock=clock,
        )
        history = [h for h in state.get("history") or [] if isinstance(h, str)]
        if history:
            session.history = history[-HISTORY_LIMIT:]
            cursor = state.get("cursor")
            if not isinstance(cursor, int) or not 0 <= cursor < len(session.history):
                cursor = len(session.history) - 1
            session.cursor = cursor
        selected = state.get("selected")
        if isinstance(selected, int) and 0 <= selected < len(session.elements):
            session.selected = selected
        session.upload_error = state.get("uploadError")
        snap = state.get("snap") or {}
        session.snap_x = bool(snap.get("x"))
        session.snap_y = bool(snap.get("y"))
        session._snap_release_at = snap.get("releaseAt")
        drag = state.get("drag")
        if isinstance(drag, dict) and 0 <= drag.get("index", -1) < len(session.elements):
            session._drag = drag
        return session
