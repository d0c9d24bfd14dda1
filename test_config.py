from conftest import make_config


def test_placeholder_addresses_need_an_at_sign(tmp_path):
    config = make_config(tmp_path)
    assert config.is_placeholder_email("kid42@noemail.mathbridge.app")
    assert config.is_placeholder_email(" Kid42@NoEmail.MathBridge.app ")
    assert not config.is_placeholder_email("noemail.mathbridge.app")
    assert not config.is_placeholder_email("kid42@school.test")
    assert not config.is_placeholder_email(None)


def test_admin_emails_are_matched_case_insensitively(tmp_path):
    config = make_config(tmp_path, admin_emails=("admin@school.test",))
    assert config.is_admin_email(" Admin@School.test")
    assert not config.is_admin_email("student@school.test")
    assert not config.is_admin_email("")
