# tests/conftest.py

from datetime import date
from decimal import Decimal

import pytest

from config import Config
from compsense.calculator.records import EmployeeRecord, SalaryBandRecord, RsuGrantRecord


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = 'DEBUG'


@pytest.fixture
def app_with_db():
    """
    Creates a new app instance for a test, sets up an in-memory database,
    and yields the app within an application context.
    """
    from compsense import create_app, db

    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app  # The tests will run here
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app_with_db):
    return app_with_db.test_client()


@pytest.fixture
def make_employee():
    """Factory for engine employee records with sensible defaults."""
    def factory(id='E1', band='P3', annual_fixed='1900000', gender='MALE', date_of_joining=date(2020, 1, 1),
                department='Engineering', **extra):
        return EmployeeRecord(id=id, band=band, annual_fixed=Decimal(str(annual_fixed)), gender=gender,
                              date_of_joining=date_of_joining, department=department, name=extra.pop('name', id),
                              **extra)
    return factory


@pytest.fixture
def make_band():
    def factory(band_code='P3', min_salary='1400000', mid_salary='1900000', max_salary='2400000',
                effective_date=date(2024, 1, 1)):
        return SalaryBandRecord(band_code=band_code, min_salary=Decimal(str(min_salary)),
                                mid_salary=Decimal(str(mid_salary)), max_salary=Decimal(str(max_salary)),
                                effective_date=effective_date)
    return factory


@pytest.fixture
def make_grant():
    def factory(id='G1', total_units=1000, cliff_months=12, vesting_schedule_months=48,
                grant_date=date(2024, 1, 15), **extra):
        return RsuGrantRecord(id=id, employee_id=extra.pop('employee_id', 'E1'), grant_date=grant_date,
                              total_units=total_units, cliff_months=cliff_months,
                              vesting_schedule_months=vesting_schedule_months, **extra)
    return factory


@pytest.fixture
def seeded_db(app_with_db):
    """Default settings plus two bands and three employees."""
    from compsense import db
    from compsense.seed import seed_data
    from compsense.models import Employee, SalaryBand

    seed_data()
    SalaryBand.query.delete()
    db.session.add_all([
        SalaryBand(id='band-p2', band_code='P2', min_salary=1100000, mid_salary=1450000, max_salary=1800000,
                   effective_date=date(2024, 1, 1)),
        SalaryBand(id='band-p3', band_code='P3', min_salary=1400000, mid_salary=1900000, max_salary=2400000,
                   effective_date=date(2024, 1, 1)),
        Employee(id='emp-1', employee_code='C001', first_name='Ada', last_name='Stone', band='P2',
                 department='Engineering', gender='FEMALE', date_of_joining=date(2021, 3, 1),
                 annual_fixed=Decimal('2000000'), performance_rating=Decimal('4.0')),
        Employee(id='emp-2', employee_code='C002', first_name='Ben', last_name='Hart', band='P3',
                 department='Sales', gender='MALE', date_of_joining=date(2019, 6, 1),
                 annual_fixed=Decimal('1900000'), performance_rating=Decimal('3.0')),
        Employee(id='emp-3', employee_code='C003', first_name='Cy', last_name='Vale', band='P2',
                 department='Sales', gender='MALE', date_of_joining=date(2024, 9, 1),
                 annual_fixed=Decimal('1200000'), performance_rating=Decimal('3.5')),
    ])
    db.session.commit()
    return app_with_db
