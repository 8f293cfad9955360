from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, Dict

from flask import (
    Response,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    stream_with_context,
    url_for,
)

from ollama_client import GenerationError

from ..extensions import db
from ..models import Character
from ..profiles import ProfileValidationError, profile_from_dict
from ..services.character_testing import (
    build_chat_prompt,
    build_test_scenarios,
    get_generation_client,
    run_batch_test_for_app,
    run_chat_turn_for_app,
    serialize_batch_result,
)
from ..services.prompt_composer import (
    analyze_prompt,
    history_from_payload,
    render_conversational_prompt,
    render_single_prompt,
)
from ..services.tier_policy import clamp_for_tier, model_name_for, sampling_options_for
from . import bp
from .forms import CharacterForm


PREVIEW_INPUT = "こんにちは"


@bp.route("/<character_id>", methods=["GET", "POST"])
def detail(character_id: str):
    character = Character.query.get_or_404(character_id)
    profile = character.to_profile()
    form = CharacterForm()

    if form.validate_on_submit():
        try:
            updated = profile_from_dict(_merge_form_payload(character.profile_payload(), form.to_payload()))
        except ProfileValidationError as exc:
            flash(str(exc), "danger")
        else:
            character.apply_profile(updated)
            db.session.commit()
            flash("Character saved.", "success")
            return redirect(url_for("characters.detail", character_id=character.id))
    elif request.method == "GET":
        form.fill_from_profile(profile)

    preview_input = (request.args.get("input") or PREVIEW_INPUT).strip()
    prompt = render_single_prompt(profile, preview_input)
    return render_template(
        "characters/detail.html",
        character=character,
        profile=clamp_for_tier(profile),
        form=form,
        preview_input=preview_input,
        prompt=prompt,
        analysis=analyze_prompt(prompt),
        scenarios=build_test_scenarios(profile),
    )


@bp.route("/api", methods=["POST"])
def create_from_json():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Send the character profile as a JSON object."}), 400

    try:
        profile = profile_from_dict(payload)
    except ProfileValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    if db.session.get(Character, profile.id) is not None:
        return jsonify({"error": f"A character with id '{profile.id}' already exists."}), 409

    character = Character.from_profile(profile)
    db.session.add(character)
    db.session.commit()
    current_app.logger.info("Created character %s (%s)", profile.id, profile.name)
    return jsonify({"id": character.id, "profile": character.profile_payload()}), 201


@bp.route("/<character_id>/profile", methods=["GET", "PUT"])
def profile_api(character_id: str):
    character = Character.query.get_or_404(character_id)
    if request.method == "GET":
        return jsonify({"id": character.id, "profile": character.profile_payload()})

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Send the character profile as a JSON object."}), 400
    payload = dict(payload, id=character.id)

    try:
        profile = profile_from_dict(payload)
    except ProfileValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    character.apply_profile(profile)
    db.session.commit()
    return jsonify({"id": character.id, "profile": character.profile_payload()})


@bp.route("/<character_id>/prompt", methods=["POST"])
def prompt_preview(character_id: str):
    character = Character.query.get_or_404(character_id)
    payload = request.get_json(silent=True) or {}
    user_input = str(payload.get("input") or "")
    history = history_from_payload(payload.get("history"))

    try:
        profile = character.to_profile()
        if history:
            prompt = render_conversational_prompt(profile, history, user_input)
        else:
            prompt = render_single_prompt(profile, user_input)
    except ProfileValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify(
        {
            "prompt": prompt,
            "analysis": asdict(analyze_prompt(prompt)),
            "model": model_name_for(profile),
            "options": sampling_options_for(profile).to_payload(),
        }
    )


@bp.route("/<character_id>/chat", methods=["POST"])
def chat(character_id: str):
    character = Character.query.get_or_404(character_id)
    payload = request.get_json(silent=True) or {}
    user_input = payload.get("input")
    if not isinstance(user_input, str):
        return jsonify({"error": "Provide the message to send as 'input'."}), 400

    try:
        profile = character.to_profile()
        result = run_chat_turn_for_app(profile, history_from_payload(payload.get("history")), user_input)
    except ProfileValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except GenerationError as exc:
        current_app.logger.warning("Chat generation failed for %s: %s", character.id, exc)
        return jsonify({"error": str(exc), "status": exc.status_code, "detail": exc.detail}), 502

    return jsonify(
        {
            "reply": result.reply,
            "prompt": result.prompt,
            "evaluation": result.record.to_dict(),
            "history": [asdict(turn) for turn in result.history],
            "metadata": asdict(result.generation),
        }
    )


@bp.route("/<character_id>/chat/stream", methods=["POST"])
def chat_stream(character_id: str):
    character = Character.query.get_or_404(character_id)
    payload = request.get_json(silent=True) or {}
    user_input = payload.get("input")
    if not isinstance(user_input, str):
        return jsonify({"error": "Provide the message to send as 'input'."}), 400

    try:
        profile = character.to_profile()
        prompt = build_chat_prompt(profile, history_from_payload(payload.get("history")), user_input)
    except ProfileValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    client = get_generation_client()
    model = model_name_for(profile)
    options = sampling_options_for(profile)
    logger = current_app.logger

    def _generate():
        try:
            for chunk in client.iter_stream(model, prompt, options):
                yield chunk
        except GenerationError as exc:
            logger.warning("Streaming generation failed for %s: %s", character_id, exc)
            yield f"\n[error] {exc}"

    return Response(stream_with_context(_generate()), mimetype="text/plain; charset=utf-8")


@bp.route("/<character_id>/batch-test", methods=["POST"])
def batch_test(character_id: str):
    character = Character.query.get_or_404(character_id)
    try:
        profile = character.to_profile()
        result = run_batch_test_for_app(profile)
    except ProfileValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        current_app.logger.exception("Unexpected error during batch test")
        return jsonify({"error": "We couldn't run the batch test right now. Please try again."}), 500

    return jsonify(serialize_batch_result(result))


@bp.route("/<character_id>/delete", methods=["POST"])
def delete(character_id: str):
    character = Character.query.get_or_404(character_id)
    db.session.delete(character)
    db.session.commit()
    flash("Character deleted.", "info")
    return redirect(url_for("main.index"))


def _merge_form_payload(existing: Dict[str, Any], submitted: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay form fields on the stored profile, keeping fields the form lacks."""

    merged = json.loads(json.dumps(existing))
    if merged.get("model_tier") != submitted.get("model_tier"):
        # A new tier gets that tier's model and sampling defaults.
        merged.pop("model", None)
        merged.pop("sampling_config", None)

    for key, value in submitted.items():
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            current.update(value)
        else:
            merged[key] = value
    return merged
