# 排期状态机测试

import pytest
from datetime import date, datetime

from scheduling import ScheduleState, InvalidTransitionError
from scheduling import transitions


def make_state(status='active', next_delivery=date(2024, 3, 2), **kwargs):
    return ScheduleState(status=status, next_delivery=next_delivery, **kwargs)


class TestPause:
    """暂停"""

    def test_pause_keeps_next_delivery(self):
        """暂停后下次配送日期不变"""
        paused = transitions.apply_pause(make_state(), datetime(2024, 4, 1))
        assert paused.status == 'paused'
        assert paused.next_delivery == date(2024, 3, 2)
        assert paused.paused_until == datetime(2024, 4, 1)

    def test_pause_twice_rejected(self):
        """重复暂停被拒绝"""
        paused = transitions.apply_pause(make_state())
        with pytest.raises(InvalidTransitionError):
            transitions.apply_pause(paused)

    def test_original_state_not_modified(self):
        """迁移返回新状态，原状态不变"""
        state = make_state()
        transitions.apply_pause(state)
        assert state.status == 'active'


class TestResume:
    """恢复"""

    def test_resume_uses_recomputed_date(self):
        """恢复后使用重新计算的日期"""
        state = make_state('paused', paused_until=datetime(2024, 4, 1))
        resumed = transitions.apply_resume(state, date(2024, 3, 23))
        assert resumed.status == 'active'
        assert resumed.paused_until is None
        assert resumed.next_delivery == date(2024, 3, 23)

    def test_resume_without_future_date_ends(self):
        """没有后续日期时进入终止状态"""
        resumed = transitions.apply_resume(make_state('paused'), None, exhausted_status='ended')
        assert resumed.status == 'ended'
        assert resumed.next_delivery is None

    def test_resume_active_rejected(self):
        """进行中的排期不能恢复"""
        with pytest.raises(InvalidTransitionError):
            transitions.apply_resume(make_state(), date(2024, 3, 9))


class TestSkip:
    """跳过"""

    def test_skip_saturday_delivery(self):
        """跳过周六配送，顺延7天"""
        skipped = transitions.apply_skip(make_state())
        assert skipped.skipped_deliveries == 1
        assert skipped.skipped_dates == [date(2024, 3, 2)]
        assert skipped.next_delivery == date(2024, 3, 9)

    def test_repeated_skips_advance_seven_days_each(self):
        """每次跳过都只顺延7天、计数加1"""
        state = make_state()
        for i in range(1, 5):
            before = state.next_delivery
            state = transitions.apply_skip(state)
            assert state.skipped_deliveries == i
            assert (state.next_delivery - before).days == 7
        assert len(state.skipped_dates) == 4

    def test_skip_custom_interval(self):
        """按配置的间隔顺延"""
        skipped = transitions.apply_skip(make_state(), interval_days=14)
        assert skipped.next_delivery == date(2024, 3, 16)

    def test_skip_without_next_delivery_rejected(self):
        """没有下次配送日期不能跳过"""
        with pytest.raises(InvalidTransitionError):
            transitions.apply_skip(make_state(next_delivery=None))

    def test_skip_paused_rejected(self):
        """暂停中不能跳过"""
        with pytest.raises(InvalidTransitionError):
            transitions.apply_skip(make_state('paused'))


class TestCancel:
    """取消"""

    @pytest.mark.parametrize("status", ['active', 'paused', 'pending'])
    def test_cancel_from_live_status(self, status):
        """进行中、暂停、待生效都可以取消"""
        cancelled_at = datetime(2024, 3, 5, 12, 0)
        cancelled = transitions.apply_cancel(make_state(status), 'cancelled', cancelled_at, "搬家")
        assert cancelled.status == 'cancelled'
        assert cancelled.next_delivery is None
        assert cancelled.cancelled_at == cancelled_at
        assert cancelled.cancel_reason == "搬家"
        assert cancelled.is_terminal

    def test_cancel_ended_rejected(self):
        """已结束的周期订单不能取消"""
        state = make_state('ended', next_delivery=None)
        with pytest.raises(InvalidTransitionError):
            transitions.apply_cancel(state, 'ended', datetime(2024, 3, 5))
        assert state.status == 'ended'

    def test_no_transition_after_cancel(self):
        """取消后任何操作都失败"""
        cancelled = transitions.apply_cancel(make_state(), 'cancelled', datetime(2024, 3, 5))
        with pytest.raises(InvalidTransitionError):
            transitions.apply_pause(cancelled)
        with pytest.raises(InvalidTransitionError):
            transitions.apply_resume(cancelled, date(2024, 3, 9))
        with pytest.raises(InvalidTransitionError):
            transitions.apply_skip(cancelled)
        with pytest.raises(InvalidTransitionError):
            transitions.apply_cancel(cancelled, 'cancelled', datetime(2024, 3, 6))

    def test_unknown_action(self):
        """未知操作"""
        with pytest.raises(ValueError):
            transitions.check_transition('archive', make_state())
