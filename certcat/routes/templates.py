from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request

from ..app import db
from ..models import Template, TemplateDraft
from ..services.editor import EditorSession
from ..shared.elements import sanitize_elements, sanitize_settings
from ..shared.rbac import owner_required

bp = Blueprint("templates", __name__, url_prefix="/templates")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object")
    return payload


def _owned_template(template_id: str, owner) -> Template:
    template = db.session.get(Template, template_id)
    if not template:
        abort(404)
    if template.owner_uid != owner.uid:
        abort(403)
    return template


def _owned_draft(draft_id: str, owner) -> TemplateDraft:
    draft = db.session.get(TemplateDraft, draft_id)
    if not draft:
        abort(404)
    if draft.owner_uid != owner.uid:
        abort(403)
    return draft


@bp.get("")
@owner_required
def list_templates(current_owner):
    rows = (
        db.session.query(Template)
        .filter(Template.owner_uid == current_owner.uid)
        .order_by(Template.created_at.desc(), Template.name)
        .all()
    )
    return jsonify({"success": True, "templates": [t.to_dict() for t in rows]})


@bp.post("")
@owner_required
def create_template(current_owner):
    payload = _json_body()
    name = (payload.get("name") or "").strip()
    image_url = (payload.get("imageUrl") or "").strip()
    if not name or not image_url:
        raise ValueError("Template name and background image are required")
    template = Template(
        owner_uid=current_owner.uid,
        owner_email=current_owner.email,
        name=name,
        image_url=image_url,
        elements=sanitize_elements(payload.get("elements")),
        settings=sanitize_settings(payload.get("settings")),
    )
    db.session.add(template)
    db.session.commit()
    current_app.logger.info("[TEMPLATE] created id=%s owner=%s", template.id, current_owner.uid)
    return jsonify({"success": True, "template": template.to_dict()}), 201


@bp.get("/<template_id>")
@owner_required
def get_template(template_id: str, current_owner):
    template = _owned_template(template_id, current_owner)
    return jsonify({"success": True, "template": template.to_dict()})


@bp.delete("/<template_id>")
@owner_required
def delete_template(template_id: str, current_owner):
    template = _owned_template(template_id, current_owner)
    db.session.delete(template)
    db.session.commit()
    current_app.logger.info("[TEMPLATE] deleted id=%s owner=%s", template_id, current_owner.uid)
    return jsonify({"success": True})


# Drafts hold the editor state between requests.


def _draft_payload(draft: TemplateDraft, editor: EditorSession, **extra):
    snap_x, snap_y = editor.snap_indicator()
    draft.state = editor.to_state()
    db.session.commit()
    return jsonify(
        {
            "success": True,
            "id": draft.id,
            "name": editor.name,
            "background": editor.background_url,
            "elements": editor.elements,
            "settings": editor.settings,
            "selected": editor.selected,
            "dragging": editor.dragging,
            "uploadError": editor.upload_error,
            "canUndo": editor.can_undo,
            "canRedo": editor.can_redo,
            "snap": {"x": snap_x, "y": snap_y},
            **extra,
        }
    )


@bp.post("/drafts")
@owner_required
def start_draft(current_owner):
    payload = request.get_json(silent=True) or {}
    source_id = payload.get("templateId")
    if source_id:
        source = _owned_template(source_id, current_owner)
        editor = EditorSession(
            source.elements,
            background_url=source.image_url,
            name=source.name,
            settings=source.settings,
        )
    else:
        editor = EditorSession(
            payload.get("elements"),
            background_url=payload.get("imageUrl"),
            name=(payload.get("name") or "").strip(),
            settings=payload.get("settings"),
        )
    draft = TemplateDraft(owner_uid=current_owner.uid, state={})
    db.session.add(draft)
    response = _draft_payload(draft, editor)
    return response, 201


@bp.get("/drafts/<draft_id>")
@owner_required
def get_draft(draft_id: str, current_owner):
    draft = _owned_draft(draft_id, current_owner)
    return _draft_payload(draft, EditorSession.from_state(draft.state))


def _number(payload: dict, key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number") from None


def _index(payload: dict) -> int:
    value = payload.get("index")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("index must be an integer")
    return value


def _surface(payload: dict) -> tuple[float, float]:
    width = _number(payload, "surfaceWidth")
    height = _number(payload, "surfaceHeight")
    if width <= 0 or height <= 0:
        raise ValueError("surface size must be positive")
    return width, height


def _apply_action(editor: EditorSession, action: str, payload: dict) -> dict:
    extra: dict = {}
    if action == "add_text":
        extra["index"] = editor.add_text(payload.get("element"))
    elif action == "add_qrcode":
        extra["index"] = editor.add_qrcode()
    elif action == "add_image":
        extra["applied"] = editor.apply_upload(
            "element",
            url=payload.get("src"),
            size_bytes=int(_number(payload, "sizeBytes")) if "sizeBytes" in payload else 0,
            aspect_ratio=payload.get("aspectRatio"),
        )
    elif action == "set_background":
        extra["applied"] = editor.apply_upload(
            "background",
            url=payload.get("url"),
            size_bytes=int(_number(payload, "sizeBytes")) if "sizeBytes" in payload else 0,
        )
    elif action == "upload_failed":
        editor.apply_upload(
            payload.get("kind") or "element",
            error=str(payload.get("error") or "Upload failed"),
        )
    elif action == "dismiss_error":
        editor.dismiss_error()
    elif action == "update":
        changes = payload.get("changes")
        if not isinstance(changes, dict):
            raise ValueError("changes must be an object")
        editor.update(_index(payload), changes)
    elif action == "delete":
        editor.delete(_index(payload))
    elif action == "duplicate":
        extra["index"] = editor.duplicate(_index(payload))
    elif action == "move_layer":
        extra["index"] = editor.move_layer(_index(payload), payload.get("direction"))
    elif action == "drag_start":
        width, height = _surface(payload)
        extra["dragging"] = editor.begin_drag(
            _index(payload), _number(payload, "pointerX"), _number(payload, "pointerY"),
            width, height,
        )
    elif action == "drag_move":
        width, height = _surface(payload)
        editor.drag_to(_number(payload, "pointerX"), _number(payload, "pointerY"), width, height)
    elif action == "drag_end":
        editor.end_drag()
    elif action == "undo":
        extra["changed"] = editor.undo()
    elif action == "redo":
        extra["changed"] = editor.redo()
    elif action == "settings":
        settings = payload.get("settings")
        if not isinstance(settings, dict):
            raise ValueError("settings must be an object")
        editor.update_settings(settings)
        if "name" in payload:
            editor.name = str(payload.get("name") or "").strip()
    else:
        raise ValueError(f"Unknown editor action: {action!r}")
    return extra


@bp.post("/drafts/<draft_id>/actions")
@owner_required
def draft_action(draft_id: str, current_owner):
    draft = _owned_draft(draft_id, current_owner)
    payload = _json_body()
    editor = EditorSession.from_state(draft.state)
    try:
        extra = _apply_action(editor, str(payload.get("action") or ""), payload)
    except IndexError as exc:
        raise ValueError(str(exc)) from exc
    return _draft_payload(draft, editor, **extra)


@bp.post("/drafts/<draft_id>/save")
@owner_required
def save_draft(draft_id: str, current_owner):
    draft = _owned_draft(draft_id, current_owner)
    editor = EditorSession.from_state(draft.state)
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or editor.name or "").strip()
    if not name:
        raise ValueError("Please enter a template name")
    if not editor.background_url:
        raise ValueError("Please upload a certificate background")
    template = Template(
        owner_uid=current_owner.uid,
        owner_email=current_owner.email,
        name=name,
        image_url=editor.background_url,
        elements=editor.elements,
        settings=editor.settings,
    )
    db.session.add(template)
    db.session.delete(draft)
    db.session.commit()
    current_app.logger.info("[TEMPLATE] saved draft=%s as id=%s", draft_id, template.id)
    return jsonify({"success": True, "template": template.to_dict()}), 201
