from datetime import date

import pytest

from models import Account, AccountKind, Goal, User
from schemas import GoalIn, GoalUpdateIn
from services import GoalService, NotFoundError, allocate_goals


def _user_with_savings(session, *balances: int) -> User:
    user = User(name="Ada", email="ada@example.com")
    session.add(user)
    session.flush()
    for balance in balances:
        session.add(
            Account(
                user_id=user.id,
                kind=AccountKind.savings,
                initial_balance_cents=balance,
                balance_cents=balance,
            )
        )
    session.add(
        Account(
            user_id=user.id,
            kind=AccountKind.checking,
            initial_balance_cents=10_000,
            balance_cents=10_000,
        )
    )
    session.commit()
    return user


def test_allocation_fills_goals_in_creation_order(session):
    user = _user_with_savings(session, 1_000, 500)
    service = GoalService(session, user.id)
    trip = service.create(GoalIn(name="Trip", target_cents=800))
    car = service.create(GoalIn(name="Car", target_cents=1_000))
    done = service.create(GoalIn(name="Done", target_cents=50))
    service.add_funds(trip.id, 100)
    service.add_funds(done.id, 60)

    allocations = service.get_allocations()

    assert service.savings_pool() == 1_500
    assert [(a.name, a.allocated_cents) for a in allocations] == [
        ("Trip", 700),
        ("Car", 800),
        ("Done", 0),
    ]
    assert allocations[0].needed_cents == 0
    assert allocations[1].funded_cents == 800
    assert allocations[1].needed_cents == 200
    assert sum(a.allocated_cents for a in allocations) <= 1_500
    assert service.get_allocations() == allocations
    assert car.position > trip.position


def test_allocation_with_negative_savings_allocates_nothing(session):
    user = _user_with_savings(session, -300)
    service = GoalService(session, user.id)
    service.create(GoalIn(name="Emergency", target_cents=5_000))

    (allocation,) = service.get_allocations()

    assert service.savings_pool() == 0
    assert allocation.allocated_cents == 0
    assert allocation.needed_cents == 5_000


def test_allocate_goals_never_exceeds_pool():
    goals = [
        Goal(id=i, name=f"g{i}", target_cents=target, current_cents=current)
        for i, (target, current) in enumerate([(300, 0), (200, 250), (700, 100), (90, 0)])
    ]
    for pool in (0, 1, 299, 300, 950, 10_000):
        allocations = allocate_goals(goals, pool)
        assert sum(a.allocated_cents for a in allocations) <= pool
        assert all(a.allocated_cents >= 0 for a in allocations)
        assert allocate_goals(goals, pool) == allocations


def test_order_follows_position_not_name(session):
    user = _user_with_savings(session)
    service = GoalService(session, user.id)
    service.create(GoalIn(name="Zeta", target_cents=10))
    service.create(GoalIn(name="Alpha", target_cents=10))

    assert [g.name for g in service.list_all()] == ["Zeta", "Alpha"]


def test_goal_names_are_unique_per_user(session):
    user = _user_with_savings(session)
    service = GoalService(session, user.id)
    goal = service.create(GoalIn(name="House", target_cents=100))
    other = service.create(GoalIn(name="Boat", target_cents=100))

    with pytest.raises(ValueError, match="already exists"):
        service.create(GoalIn(name="house", target_cents=50))
    with pytest.raises(ValueError, match="already exists"):
        service.update(other.id, GoalUpdateIn(name="HOUSE"))

    updated = service.update(goal.id, GoalUpdateIn(target_cents=400, deadline=date(2030, 1, 1)))
    assert updated.name == "House"
    assert updated.target_cents == 400
    assert updated.deadline == date(2030, 1, 1)


def test_add_funds_and_delete(session):
    user = _user_with_savings(session)
    service = GoalService(session, user.id)
    goal = service.create(GoalIn(name="Bike", target_cents=900))

    service.add_funds(goal.id, 200)
    service.add_funds(goal.id, 150)
    assert service.get(goal.id).current_cents == 350
    with pytest.raises(ValueError):
        service.add_funds(goal.id, 0)

    goal_id = goal.id
    service.delete(goal_id)
    with pytest.raises(NotFoundError):
        service.get(goal_id)
