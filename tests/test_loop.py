"""
Tests for the fixed-rate training loop.
"""

import pytest

from arena_evo.engine.environment import Environment, observation_matrix
from arena_evo.engine.tick import TrainingLoop
from arena_evo.evolution import EvolutionController, Population
from arena_evo.rl import PerAgentTrainer


def _loop(env, tmp_path, kind="feedforward", batch_size=32, **ctl):
    extra = (dict(hidden_sizes=(8, 6)) if kind == "feedforward"
             else dict(hidden_size=8, dropout_rate=0.0, sequence_length=4, replay_capacity=64))
    pop = Population.build(size=env.n, kind=kind, seed=0, input_size=6, output_size=5, **extra)
    trainer = PerAgentTrainer(pop, batch_size=batch_size)
    opts = dict(generation_duration=100.0, reward_timeout=0.0, auto_save_enabled=False)
    opts.update(ctl)
    controller = EvolutionController(pop, env, trainer=trainer, save_dir=str(tmp_path), seed=0, **opts)
    return TrainingLoop(env, pop, trainer, controller, target_tps=10)


class TestObservations:

    def test_fake_arena_satisfies_protocol(self, arena):
        assert isinstance(arena, Environment)

    def test_shared_vector_is_broadcast(self):
        m = observation_matrix([0.1, 0.2, 0.3], 4)
        assert m.shape == (4, 3)
        assert m[3].tolist() == pytest.approx([0.1, 0.2, 0.3])

    def test_wrong_rows(self):
        with pytest.raises(ValueError):
            observation_matrix([[0.0, 1.0]] * 3, 4)


class TestTrainingLoop:

    def test_one_tick(self, arena, tmp_path):
        loop = _loop(arena, tmp_path)
        metrics = loop.run_tick()
        assert metrics.tick == 1
        assert len(arena.applied) == 4
        assert metrics.reward == pytest.approx(1.0 + 0.5 + 0.0 - 0.5)
        assert loop.trainer.pending() == {0: 1, 1: 1, 2: 1, 3: 1}
        assert loop.population[0].stats.total_reward == pytest.approx(1.0)
        assert loop.dt == pytest.approx(0.1)

    def test_actions_collected_before_training(self, arena, tmp_path):
        loop = _loop(arena, tmp_path)
        seen = []
        real_record = loop.trainer.record

        def spy(i, exp):
            seen.append(len(arena.applied))
            return real_record(i, exp)

        loop.trainer.record = spy
        loop.run_tick()
        assert seen == [4, 4, 4, 4]

    def test_death_closes_transition(self, make_arena, tmp_path):
        env = make_arena(4, step_rewards=[0.2] * 4, deaths={1: [2]})
        loop = _loop(env, tmp_path)
        metrics = loop.run_tick()
        assert metrics.deaths == 1
        assert metrics.trained == 1
        assert 2 not in loop.trainer.pending()
        assert loop.population[2].stats.episodes == 1

        env.applied.clear()
        loop.run_tick()
        assert sorted(i for i, _ in env.applied) == [0, 1, 3]

    def test_short_recurrent_replay_not_counted(self, make_arena, tmp_path):
        env = make_arena(4, step_rewards=[0.2] * 4, deaths={1: [2]})
        loop = _loop(env, tmp_path, kind="recurrent", batch_size=32)
        metrics = loop.run_tick()
        assert metrics.deaths == 1
        assert metrics.trained == 0
        assert loop.stats.train_updates == 0

    def test_last_survivor_ends_generation(self, make_arena, tmp_path):
        env = make_arena(2, step_rewards=[1.0, 0.0], deaths={1: [1]})
        loop = _loop(env, tmp_path)
        metrics = loop.run_tick()
        assert metrics.generation_ended is True
        assert loop.controller.current_generation == 1
        assert loop.last_report.trigger == "episode_end"
        assert env.reset_calls == 1
        assert loop.stats.generations[0].generation == 0

    def test_episode_finished_ends_generation(self, make_arena, tmp_path):
        env = make_arena(3, finish_at=2)
        loop = _loop(env, tmp_path)
        assert loop.run_tick().generation_ended is False
        assert loop.run_tick().generation_ended is True

    def test_recurrent_population(self, make_arena, tmp_path):
        env = make_arena(3, step_rewards=[1.0, 0.0, -1.0], shared_obs=True)
        loop = _loop(env, tmp_path, kind="recurrent", batch_size=2)
        stats = loop.run(max_ticks=5)
        assert stats.tick == 5
        assert stats.train_updates > 0
        assert len(loop.population[0].brain.replay) == 5

    def test_run_stops_at_max_ticks(self, arena, tmp_path):
        loop = _loop(arena, tmp_path, batch_size=2)
        stats = loop.run(max_ticks=6)
        assert stats.tick == 6
        assert loop.running is False
        assert stats.train_samples == 4 * 6

    def test_invalid_rate(self, arena, tmp_path):
        loop = _loop(arena, tmp_path)
        with pytest.raises(ValueError):
            TrainingLoop(arena, loop.population, loop.trainer, loop.controller, target_tps=0)


class TestBuildTraining:

    def test_wires_from_config(self, make_arena, monkeypatch, tmp_path):
        from arena_evo import config
        from arena_evo.engine.tick import build_training
        from arena_evo.utils.persistence import CheckpointWriter

        monkeypatch.setattr(config, "POPULATION_SIZE", 3)
        monkeypatch.setattr(config, "OBS_DIM", 6)
        monkeypatch.setattr(config, "BRAIN_KIND", "feedforward")
        writer = CheckpointWriter()
        loop = build_training(make_arena(3), writer=writer, run_dir=str(tmp_path / "run"), background=False)
        try:
            assert len(loop.population) == 3
            assert loop.controller.writer is writer
            assert (tmp_path / "run" / "config.json").exists()
            loop.run_tick()
        finally:
            writer.close()
