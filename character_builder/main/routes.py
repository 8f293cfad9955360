from dataclasses import asdict

from flask import current_app, flash, jsonify, redirect, render_template, url_for

from ..characters.forms import CharacterForm
from ..extensions import db
from ..models import Character
from ..profiles import ProfileValidationError, profile_from_dict
from ..services.character_testing import get_generation_client
from . import bp


@bp.route("/", methods=["GET", "POST"])
def index():
    form = CharacterForm()
    if form.validate_on_submit():
        try:
            profile = profile_from_dict(form.to_payload())
        except ProfileValidationError as exc:
            flash(str(exc), "danger")
        else:
            character = Character.from_profile(profile)
            db.session.add(character)
            db.session.commit()
            flash("Character created.", "success")
            return redirect(url_for("characters.detail", character_id=character.id))

    characters = Character.query.order_by(Character.updated_at.desc()).all()
    return render_template("main/index.html", characters=characters, form=form)


@bp.route("/status")
def status():
    client = get_generation_client()
    connection = client.check_status()
    if not connection.connected:
        current_app.logger.info("Model server unavailable: %s", connection.error)
    return jsonify(asdict(connection))
