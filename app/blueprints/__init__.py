"""
Siteline — construction project management platform
Blueprint registry and request helpers shared by every API blueprint.

Blueprints stay thin: parse the request, call a server action with
``user=g.current_user``, render the ActionResult with ``respond``.
"""

from flask import Response, g, request

from app.core.actions import respond
from app.services.storage_service import UploadedFile


def current_user():
    return g.current_user


def json_body():
    return request.get_json(silent=True) or {}


def form_or_json():
    """Multipart form fields or JSON body, as a plain dict."""
    if request.files or request.form:
        return request.form.to_dict()
    return json_body()


def uploaded_file(field="file"):
    storage = request.files.get(field)
    if storage is None or not storage.filename:
        return None
    return UploadedFile.from_file_storage(storage)


def uploaded_files(field="files"):
    return [UploadedFile.from_file_storage(f) for f in request.files.getlist(field) if f.filename]


def arg_bool(name):
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def arg_int(name, default=None):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def download(result, mimetype):
    """Send an export action's ``{"filename", "content"}`` as an attachment."""
    if not result.success:
        return respond(result)
    content = result.data["content"]
    if isinstance(content, str):
        content = content.encode("utf-8")
    return Response(content, mimetype=mimetype, headers={
        "Content-Disposition": f'attachment; filename="{result.data["filename"]}"',
    })


def register_blueprints(app):
    from app.blueprints.ai_bp import ai_bp
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.budget_bp import budget_bp
    from app.blueprints.change_order_bp import change_order_bp
    from app.blueprints.cron_bp import cron_bp
    from app.blueprints.daily_report_bp import daily_report_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.invoice_bp import invoice_bp
    from app.blueprints.organization_bp import organization_bp
    from app.blueprints.project_bp import project_bp
    from app.blueprints.rfi_bp import rfi_bp
    from app.blueprints.submittal_bp import submittal_bp

    for bp in (health_bp, auth_bp, organization_bp, project_bp, budget_bp, invoice_bp,
               ai_bp, rfi_bp, submittal_bp, daily_report_bp, change_order_bp, cron_bp):
        app.register_blueprint(bp)
