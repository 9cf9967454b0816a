from biggie.simulation import DOWNTIME, ERROR_RATE, FLAGS, LATENCY, PACKET_LOSS, SimulationState


class TestSimulationState:
    def test_inactive_by_default(self, clock):
        state = SimulationState(clock)
        assert all(state.current(name) == 0 for name in FLAGS)

    def test_expires_by_clock(self, clock):
        state = SimulationState(clock)
        state.activate(LATENCY, 250, 2)
        assert state.current(LATENCY) == 250
        clock.sleep(1.9)
        assert state.current(LATENCY) == 250
        clock.sleep(0.2)
        assert state.current(LATENCY) == 0

    def test_flags_are_independent(self, clock):
        state = SimulationState(clock)
        state.activate(PACKET_LOSS, 40, 5)
        assert state.current(PACKET_LOSS) == 40
        assert state.current(ERROR_RATE) == 0

    def test_stale_clear_keeps_newer_activation(self, clock):
        state = SimulationState(clock)
        first = state.activate(DOWNTIME, 1, 1)
        second = state.activate(DOWNTIME, 1, 10)
        assert state.deactivate(DOWNTIME, first) is False
        assert state.current(DOWNTIME) == 1
        assert state.deactivate(DOWNTIME, second) is True
        assert state.current(DOWNTIME) == 0

    def test_clear_after(self, clock):
        state = SimulationState(clock)
        generation = state.activate(ERROR_RATE, 0.5, 60)
        state.clear_after(ERROR_RATE, generation, 0)
        assert state.current(ERROR_RATE) == 0

    def test_snapshot(self, clock):
        state = SimulationState(clock)
        state.activate(LATENCY, 300, 4)
        clock.sleep(1)
        snapshot = state.snapshot()
        assert snapshot[LATENCY] == {"active": True, "value": 300, "remaining_second": 3.0}
        assert snapshot[DOWNTIME] == {"active": False, "value": 0, "remaining_second": 0}
        assert set(snapshot) == set(FLAGS)

    def test_clear_after_negative_window(self, clock):
        state = SimulationState(clock)
        generation = state.activate(LATENCY, 100, -1)
        assert state.current(LATENCY) == 0
        state.clear_after(LATENCY, generation, -1)
        assert state.snapshot()[LATENCY]["active"] is False
