from printdesk.models import Company, Product, User


class TestSystemInit:

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init"])
        assert result.exit_code == 0, result.output
        assert "DONE PrintDesk Initialized" in result.output

        company = Company.query.filter_by(code="PD").one()
        assert Product.query.filter_by(company_id=company.id).count() == 4
        assert {u.username for u in User.query.all()} == {"admin", "manager", "staff", "production"}

        again = runner.invoke(args=["system", "init"])
        assert again.exit_code == 0
        assert "already exists" in again.output
        assert User.query.count() == 4

    def test_users_list_and_pricing_sample(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["system", "init"])
        company = Company.query.filter_by(code="PD").one()

        users = runner.invoke(args=["users", "list", "--company-id", str(company.id)])
        assert users.exit_code == 0
        assert "production" in users.output

        sample = runner.invoke(args=["pricing", "sample", "--company-id", str(company.id)])
        assert sample.exit_code == 0
        assert "Light" in sample.output
        assert "Rs. 200.00" in sample.output

    def test_create_user_rejects_weak_password(self, app, company):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--company-id", str(company.id),
            "--username", "desk1",
            "--email", "desk1@printdesk.local",
            "--password", "weak",
            "--role", "staff",
        ])
        assert result.exit_code != 0
        assert "at least 8 characters" in result.output
