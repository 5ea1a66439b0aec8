# -*- coding: utf-8 -*-
"""Tests for models/application.py - Application and review action models"""

from models.application import Application, ApplicationStatus, ReviewAction, short_code

GUILD_ID = 987654321


def _app(db_session, user_id=555, status=ApplicationStatus.SUBMITTED, guild_id=GUILD_ID, app_id=None):
    app = Application(GuildId=guild_id, UserId=user_id, Status=status)
    if app_id is not None:
        app.Id = app_id
    db_session.add(app)
    db_session.flush()
    return app


class TestShortCode:
    def test_six_uppercase_hex_characters(self):
        code = short_code("0123456789abcdef0123456789abcdef")
        assert len(code) == 6
        assert code == code.upper()
        int(code, 16)

    def test_stable_for_the_same_id(self):
        assert short_code("abc") == short_code("abc")
        assert short_code("abc") != short_code("abd")

    def test_property_matches_function(self, db_session):
        app = _app(db_session)
        assert app.short_code == short_code(app.Id)


class TestApplication:
    def test_defaults(self, db_session):
        app = Application(GuildId=GUILD_ID, UserId=555)
        db_session.add(app)
        db_session.flush()

        assert len(app.Id) == 32
        assert app.Status == ApplicationStatus.DRAFT
        assert app.PermanentlyRejected is False
        assert not app.is_terminal

    def test_terminal_statuses(self, db_session):
        assert _app(db_session, status=ApplicationStatus.KICKED).is_terminal
        assert not _app(db_session, user_id=556, status=ApplicationStatus.NEEDS_INFO).is_terminal

    def test_get_by_short_code(self, db_session):
        app = _app(db_session)

        assert Application.get_by_short_code(GUILD_ID, app.short_code.lower(), db_session).Id == app.Id
        assert Application.get_by_short_code(GUILD_ID, f"  {app.short_code} ", db_session).Id == app.Id

    def test_get_by_short_code_is_scoped_to_guild(self, db_session):
        app = _app(db_session)
        assert Application.get_by_short_code(111, app.short_code, db_session) is None

    def test_get_open_for_user_skips_decided(self, db_session):
        _app(db_session, status=ApplicationStatus.REJECTED)
        assert Application.get_open_for_user(GUILD_ID, 555, db_session) is None

        pending = _app(db_session, status=ApplicationStatus.NEEDS_INFO)
        assert Application.get_open_for_user(GUILD_ID, 555, db_session).Id == pending.Id

    def test_get_all_by_user(self, db_session):
        _app(db_session, status=ApplicationStatus.REJECTED)
        _app(db_session)
        _app(db_session, user_id=777)

        assert len(Application.get_all_by_user(GUILD_ID, 555, db_session)) == 2


class TestReviewAction:
    def test_history_is_ordered(self, db_session):
        app = _app(db_session)
        db_session.add(ReviewAction(ApplicationId=app.Id, ModeratorId=1, Action="needs_info"))
        db_session.add(ReviewAction(ApplicationId=app.Id, ModeratorId=2, Action="approve", Reason="ok"))
        db_session.flush()

        history = ReviewAction.get_by_application(app.Id, db_session)
        assert [action.Action for action in history] == ["needs_info", "approve"]
        assert ReviewAction.get_latest(app.Id, db_session).ModeratorId == 2
        assert ReviewAction.count_by_application(app.Id, db_session) == 2

    def test_no_history(self, db_session):
        app = _app(db_session)
        assert ReviewAction.get_latest(app.Id, db_session) is None
        assert ReviewAction.count_by_application(app.Id, db_session) == 0

    def test_relationship(self, db_session):
        app = _app(db_session)
        db_session.add(ReviewAction(ApplicationId=app.Id, ModeratorId=1, Action="reject"))
        db_session.flush()
        db_session.refresh(app)

        assert [action.Action for action in app.review_actions] == ["reject"]
        assert app.review_actions[0].CreatedAt > 0
