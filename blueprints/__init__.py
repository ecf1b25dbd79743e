"""
Blueprint registration for GreenDye Academy.

Each blueprint carries its own /api URL prefix.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.core import bp as core_bp
    from blueprints.courses import bp as courses_bp
    from blueprints.quizzes import bp as quizzes_bp
    from blueprints.questions import bp as questions_bp
    from blueprints.progress import bp as progress_bp
    from blueprints.gamification import bp as gamification_bp
    from blueprints.notifications import bp as notifications_bp
    from blueprints.chat import bp as chat_bp
    from blueprints.backup import bp as backup_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(courses_bp)
    app.register_blueprint(quizzes_bp)
    app.register_blueprint(questions_bp)
    app.register_blueprint(progress_bp)
    app.register_blueprint(gamification_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(backup_bp)
