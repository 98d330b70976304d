"""
Tests for action conversion, agent policies and brain construction.
"""

import pytest
import torch

from arena_evo.agent import (ActionVector, AgentPolicy, BrainKind, FeedforwardBrain,
                             RecurrentBrain, build_brain)
from arena_evo.agent.ensemble import ensemble_act

OBS = [0.5, 0.5, 0.1, 0.9, 0.3, 0.7]


class TestActionVector:

    def test_from_output_clamps(self):
        a = ActionVector.from_output(torch.tensor([2.0, 0.2, -0.5, -3.0, 0.3]), shoot_threshold=0.1)
        assert a.look_delta == 1.0
        assert a.shoot == 1.0
        assert a.forward == 0.0
        assert a.strafe_left == -1.0
        assert a.strafe_right == pytest.approx(0.3)

    def test_shoot_threshold(self):
        a = ActionVector.from_output(torch.tensor([0.0, 0.05, 0.5, 0.0, 0.0]), shoot_threshold=0.1)
        assert a.shoot == 0.0
        assert a.wants_to_shoot is False

    def test_random_in_range(self):
        g = torch.Generator().manual_seed(0)
        for _ in range(50):
            a = ActionVector.random(g)
            assert -1.0 <= a.look_delta <= 1.0
            assert a.shoot in (0.0, 1.0)
            assert 0.0 <= a.forward <= 1.0
            assert -1.0 <= a.strafe_left <= 1.0

    def test_immutable(self):
        a = ActionVector()
        with pytest.raises(Exception):
            a.shoot = 1.0  # type: ignore[misc]

    def test_list_and_tensor(self):
        a = ActionVector(0.1, 1.0, 0.5, -0.2, 0.3)
        assert a.to_list() == pytest.approx([0.1, 1.0, 0.5, -0.2, 0.3])
        assert a.as_tensor().shape == (5,)


class TestAgentPolicy:

    def test_noise_free_matches_brain(self, ff_kwargs):
        brain = FeedforwardBrain(seed=0, **ff_kwargs)
        policy = AgentPolicy(0, brain, exploration_noise=0.0, random_actions=False)
        expected = ActionVector.from_output(brain.forward(OBS), policy.shoot_threshold)
        assert policy.act(OBS) == expected

    def test_noise_streams_are_per_agent(self, ff_kwargs):
        a = AgentPolicy(0, FeedforwardBrain(seed=0, **ff_kwargs), exploration_noise=0.5, random_actions=False)
        b = AgentPolicy(1, FeedforwardBrain(seed=0, **ff_kwargs), exploration_noise=0.5, random_actions=False)
        a.act(OBS)
        b.act(OBS)
        assert not torch.equal(a.last_output, b.last_output)

    def test_random_mode(self, ff_kwargs):
        policy = AgentPolicy(0, FeedforwardBrain(seed=0, **ff_kwargs), random_actions=True)
        action = policy.act(OBS)
        assert isinstance(action, ActionVector)
        assert policy.last_output is None

    def test_forced_shooting(self, ff_kwargs):
        policy = AgentPolicy(0, FeedforwardBrain(seed=0, **ff_kwargs), exploration_noise=0.0,
                             random_actions=False, random_shoot_prob=1.0, shoot_threshold=2.0)
        assert policy.act(OBS).shoot == 1.0

    def test_negative_noise_rejected(self, ff_kwargs):
        with pytest.raises(ValueError):
            AgentPolicy(0, FeedforwardBrain(seed=0, **ff_kwargs), exploration_noise=-0.1)

    def test_episode_end_resets_recurrent_memory(self, rnn_kwargs):
        policy = AgentPolicy(0, RecurrentBrain(seed=0, **rnn_kwargs), random_actions=False)
        policy.act(OBS)
        policy.on_episode_end()
        assert policy.stats.episodes == 1
        assert torch.count_nonzero(policy.brain.hidden) == 0

    def test_replace_brain_resets_stats(self, ff_kwargs):
        policy = AgentPolicy(0, FeedforwardBrain(seed=0, **ff_kwargs))
        policy.add_reward(3.0)
        policy.replace_brain(FeedforwardBrain(seed=1, **ff_kwargs))
        assert policy.stats.total_reward == 0.0
        assert policy.brain.seed == 1


class TestEnsemble:

    def test_threaded_matches_sequential(self, ff_kwargs):
        def make():
            return [AgentPolicy(i, FeedforwardBrain(seed=i, **ff_kwargs), exploration_noise=0.0,
                                random_actions=False) for i in range(4)]
        obs = torch.rand((4, 6), generator=torch.Generator().manual_seed(1))
        assert ensemble_act(make(), obs, max_workers=1) == ensemble_act(make(), obs, max_workers=4)

    def test_shared_observation(self, ff_kwargs):
        policies = [AgentPolicy(i, FeedforwardBrain(seed=i, **ff_kwargs)) for i in range(3)]
        assert len(ensemble_act(policies, OBS, max_workers=1)) == 3

    def test_empty(self):
        assert ensemble_act([], OBS) == []


class TestFactory:

    def test_aliases(self):
        assert BrainKind.parse("ff") is BrainKind.FEEDFORWARD
        assert BrainKind.parse("LSTM") is BrainKind.RECURRENT
        assert BrainKind.parse(BrainKind.RECURRENT) is BrainKind.RECURRENT
        with pytest.raises(ValueError):
            BrainKind.parse("transformer")

    def test_builds_each_kind(self, ff_kwargs, rnn_kwargs):
        ff = build_brain("feedforward", seed=2, **ff_kwargs)
        rnn = build_brain("recurrent", seed=2, **rnn_kwargs)
        assert isinstance(ff, FeedforwardBrain) and ff.is_initialized
        assert isinstance(rnn, RecurrentBrain) and rnn.is_initialized

    def test_bad_override(self):
        with pytest.raises(TypeError):
            build_brain("feedforward", seed=0, hidden_size=8)
