"""Tests for template variable rendering."""

from pgbranch.utils.template import TemplateContext, render


def make_context(**overrides):
    values = dict(
        branch_name="feature/login",
        db_name="myapp_feature_login",
        db_host="localhost",
        db_port=5432,
        db_user="postgres",
        template_db="template0",
        prefix="myapp",
    )
    values.update(overrides)
    return TemplateContext(**values)


class TestRender:
    """Test the substitution rules."""

    def test_concatenation(self):
        variables = make_context().variables()
        assert (
            render("{branch_name}-{db_name}", variables)
            == "feature/login-myapp_feature_login"
        )

    def test_unknown_token_passes_through(self):
        variables = make_context().variables()
        assert render("{unknown} {db_name}", variables) == "{unknown} myapp_feature_login"

    def test_shell_syntax_survives(self):
        variables = make_context().variables()
        command = "echo ${HOME} && psql -d {db_name} -c '{}'"
        assert render(command, variables) == (
            "echo ${HOME} && psql -d myapp_feature_login -c '{}'"
        )

    def test_all_variables(self):
        variables = make_context(db_password="secret").variables()
        rendered = render(
            "{db_host}:{db_port}/{db_user}:{db_password}@{template_db}/{prefix}", variables
        )
        assert rendered == "localhost:5432/postgres:secret@template0/myapp"

    def test_unset_password_left_verbatim(self):
        variables = make_context().variables()

        assert "db_password" not in variables
        assert render("PASS={db_password}", variables) == "PASS={db_password}"

    def test_values_are_not_rescanned(self):
        variables = make_context(branch_name="{db_name}").variables()
        assert render("{branch_name}", variables) == "{db_name}"

    def test_unrecognized_name_not_substituted_even_if_bound(self):
        assert render("{other}", {"other": "value"}) == "{other}"

    def test_port_rendered_as_string(self):
        assert make_context(db_port=6543).variables()["db_port"] == "6543"
