from datetime import datetime, timedelta

from bookkeeper import create_app
from bookkeeper.extensions import db
from bookkeeper.models import User, Company, CompanyUser, ComplianceTask
from bookkeeper.utils.coa import seed_chart_of_accounts


def seed():
    app = create_app()
    with app.app_context():
        db.create_all()

        # Demo owner
        owner = User.query.filter_by(email="owner@example.com").first()
        if owner is None:
            owner = User(name="Demo Owner", email="owner@example.com", active=True)
            owner.set_password("owner123")
            db.session.add(owner)
            db.session.commit()

        # Demo company with the UAE chart of accounts
        company = Company.query.filter_by(name="Demo Trading LLC").first()
        if company is None:
            company = Company(name="Demo Trading LLC", base_currency="AED", locale="en",
                              trn_vat_number="100000000000003", vat_filing_frequency="quarterly")
            db.session.add(company)
            db.session.flush()
            db.session.add(CompanyUser(company_id=company.id, user_id=owner.id, role="owner"))
            db.session.commit()
        created = seed_chart_of_accounts(company.id)
        db.session.commit()

        # First VAT return reminder
        if not ComplianceTask.query.filter_by(company_id=company.id).first():
            db.session.add(ComplianceTask(
                company_id=company.id,
                title="Quarterly VAT return",
                category="vat_filing",
                due_date=datetime.utcnow() + timedelta(days=28),
                priority="high",
                created_by=owner.id,
            ))
            db.session.commit()

        app.logger.info("Seeded company %s (%s new accounts)", company.name, created)


if __name__ == "__main__":
    seed()
