"""
Default leave policy data for India, USA and GLOBAL.
In production, policies, holidays and employees come from the database and the
HR directory; these seeds back the in-memory repository and the command-line runner.
"""

from datetime import date

from leave_engine.models import (
    HR_ADMIN,
    L1_MANAGER,
    L2_MANAGER,
    AccrualFrequency,
    CarryForwardRule,
    CompOffRules,
    DesignationBand,
    EmployeeProfile,
    Gender,
    LeavePolicy,
    MaritalStatus,
    Region,
)

POLICY_START = date(2024, 1, 1)

INDIA_POLICIES = [
    LeavePolicy(
        leave_type_code="CL",
        name="Casual Leave",
        region=Region.INDIA,
        effective_from=POLICY_START,
        entitlement_days=12,
        accrual_rate=1.0,
        accrual_frequency=AccrualFrequency.MONTHLY,
        max_consecutive_days=3,
        carry_forward_rule=CarryForwardRule.EXPIRE_ALL,
        approval_levels=1,
    ),
    LeavePolicy(
        leave_type_code="PL",
        name="Privilege Leave",
        region=Region.INDIA,
        effective_from=POLICY_START,
        entitlement_days=12,
        accrual_rate=1.0,
        accrual_frequency=AccrualFrequency.MONTHLY,
        max_consecutive_days=10,
        carry_forward_rule=CarryForwardRule.CAP_AT_MAX,
        carry_forward_max_days=30,
        advance_notice_days=7,
        encashment_allowed=True,
        available_during_probation=False,
    ),
    LeavePolicy(
        leave_type_code="SL",
        name="Sick Leave",
        region=Region.INDIA,
        effective_from=POLICY_START,
        entitlement_days=12,
        accrual_frequency=AccrualFrequency.ANNUAL,
        max_consecutive_days=7,
        documentation_threshold_days=2,
        approval_levels=1,
    ),
    LeavePolicy(
        leave_type_code="MATERNITY",
        name="Maternity Leave",
        region=Region.INDIA,
        effective_from=POLICY_START,
        entitlement_days=182,
        accrual_frequency=AccrualFrequency.ANNUAL,
        allowed_genders=frozenset({Gender.FEMALE}),
        min_service_months=3,
        max_consecutive_days=182,
        counts_calendar_days=True,
        allow_multiple_per_year=False,
        suspends_accrual=True,
        documentation_threshold_days=0,
    ),
    LeavePolicy(
        leave_type_code="PATERNITY",
        name="Paternity Leave",
        region=Region.INDIA,
        effective_from=POLICY_START,
        entitlement_days=15,
        accrual_frequency=AccrualFrequency.ANNUAL,
        allowed_genders=frozenset({Gender.MALE}),
        allowed_marital_statuses=frozenset({MaritalStatus.MARRIED}),
        max_consecutive_days=15,
        allow_multiple_per_year=False,
    ),
    LeavePolicy(
        leave_type_code="COMP_OFF",
        name="Compensatory Off",
        region=Region.INDIA,
        effective_from=POLICY_START,
        max_consecutive_days=3,
        uses_comp_off_ledger=True,
        comp_off_rules=CompOffRules(),
        approval_levels=1,
    ),
]

USA_POLICIES = [
    LeavePolicy(
        leave_type_code="PTO",
        name="Paid Time Off",
        region=Region.USA,
        effective_from=POLICY_START,
        entitlement_days=15,
        accrual_frequency=AccrualFrequency.ANNUAL,
        designation_entitlements={
            DesignationBand.BELOW_AVP: 15,
            DesignationBand.AVP: 20,
            DesignationBand.VP_AND_ABOVE: 25,
        },
        max_consecutive_days=10,
        advance_notice_days=3,
        carry_forward_rule=CarryForwardRule.DESIGNATION_BASED,
        carry_forward_max_days=5,
        designation_carry_forward_caps={
            DesignationBand.BELOW_AVP: 5,
            DesignationBand.AVP: 5,
            DesignationBand.VP_AND_ABOVE: 0,
        },
    ),
    LeavePolicy(
        leave_type_code="SICK",
        name="Sick Leave",
        region=Region.USA,
        effective_from=POLICY_START,
        entitlement_days=10,
        accrual_frequency=AccrualFrequency.ANNUAL,
        documentation_threshold_days=3,
        approval_levels=1,
    ),
]

GLOBAL_POLICIES = [
    LeavePolicy(
        leave_type_code="LWP",
        name="Leave Without Pay",
        region=Region.GLOBAL,
        effective_from=POLICY_START,
        allow_negative_balance=True,
        max_consecutive_days=30,
        suspends_accrual=True,
    ),
    LeavePolicy(
        leave_type_code="BEREAVEMENT",
        name="Bereavement Leave",
        region=Region.GLOBAL,
        effective_from=POLICY_START,
        entitlement_days=5,
        accrual_frequency=AccrualFrequency.ANNUAL,
        max_consecutive_days=5,
        approval_levels=1,
    ),
]

LEAVE_POLICIES = INDIA_POLICIES + USA_POLICIES + GLOBAL_POLICIES

HOLIDAYS = {
    Region.INDIA: [
        date(2025, 1, 26),
        date(2025, 3, 14),
        date(2025, 8, 15),
        date(2025, 10, 2),
        date(2025, 10, 20),
        date(2025, 12, 25),
    ],
    Region.USA: [
        date(2025, 1, 1),
        date(2025, 5, 26),
        date(2025, 7, 4),
        date(2025, 9, 1),
        date(2025, 11, 27),
        date(2025, 12, 25),
    ],
    Region.GLOBAL: [],
}

EMPLOYEES = [
    EmployeeProfile(
        id="E100",
        name="Anita Rao",
        region=Region.INDIA,
        gender=Gender.FEMALE,
        marital_status=MaritalStatus.MARRIED,
        designation="VP",
        joining_date=date(2015, 4, 1),
        roles=frozenset({L1_MANAGER, L2_MANAGER}),
    ),
    EmployeeProfile(
        id="E101",
        name="Vikram Nair",
        region=Region.INDIA,
        gender=Gender.MALE,
        marital_status=MaritalStatus.MARRIED,
        designation="MANAGER",
        joining_date=date(2018, 7, 16),
        reporting_manager_id="E100",
        roles=frozenset({L1_MANAGER}),
    ),
    EmployeeProfile(
        id="E102",
        name="Priya Sharma",
        region=Region.INDIA,
        gender=Gender.FEMALE,
        marital_status=MaritalStatus.SINGLE,
        designation="DEVELOPER",
        joining_date=date(2021, 6, 10),
        reporting_manager_id="E101",
    ),
    EmployeeProfile(
        id="E103",
        name="Meera Iyer",
        region=Region.INDIA,
        gender=Gender.FEMALE,
        designation="HR_MANAGER",
        joining_date=date(2019, 2, 1),
        roles=frozenset({HR_ADMIN}),
    ),
    EmployeeProfile(
        id="E200",
        name="John Doe",
        region=Region.USA,
        gender=Gender.MALE,
        marital_status=MaritalStatus.MARRIED,
        designation="VP",
        joining_date=date(2016, 1, 15),
        roles=frozenset({L1_MANAGER, L2_MANAGER}),
    ),
    EmployeeProfile(
        id="E201",
        name="Sarah Johnson",
        region=Region.USA,
        gender=Gender.FEMALE,
        marital_status=MaritalStatus.SINGLE,
        designation="SENIOR_DEVELOPER",
        joining_date=date(2022, 3, 1),
        reporting_manager_id="E200",
    ),
]


def get_leave_policy_data(region: Region, leave_type_code: str | None = None) -> list[LeavePolicy]:
    """Seed policies visible to ``region`` (its own plus GLOBAL), optionally one type."""
    return [
        policy
        for policy in LEAVE_POLICIES
        if policy.region in (region, Region.GLOBAL)
        and (leave_type_code is None or policy.leave_type_code == leave_type_code)
    ]
