"""
Tests for atomic documents, the checkpoint writer and weight sanity checks.
"""

import json

import pytest
import torch

from arena_evo.agent import AgentPolicy, FeedforwardBrain
from arena_evo.errors import PersistenceError
from arena_evo.utils.persistence import CheckpointWriter, atomic_json_dump, read_json, timestamp_dir
from arena_evo.utils.sanitize import all_finite, non_finite_params, runtime_sanity_check


class TestDocuments:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "doc.json"
        atomic_json_dump({"a": [1.0, 2.0]}, path)
        assert read_json(path) == {"a": [1.0, 2.0]}
        assert not list(path.parent.glob("*.tmp"))

    def test_missing(self, tmp_path):
        with pytest.raises(PersistenceError):
            read_json(tmp_path / "missing.json")

    def test_malformed(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        with pytest.raises(PersistenceError):
            read_json(bad)

    def test_non_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(PersistenceError):
            read_json(path)

    def test_unserializable(self, tmp_path):
        with pytest.raises(PersistenceError):
            atomic_json_dump({"x": object()}, tmp_path / "x.json")
        assert not (tmp_path / "x.json").exists()

    def test_timestamp_dir(self, tmp_path):
        folder = timestamp_dir(tmp_path, prefix="autosave")
        assert folder.name.startswith("autosave_")
        assert folder.is_dir()

    def test_timestamp_dir_never_reused(self, tmp_path):
        folders = {timestamp_dir(tmp_path, prefix="run") for _ in range(5)}
        assert len(folders) == 5
        assert all(f.is_dir() for f in folders)

    def test_timestamp_dir_unwritable(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with pytest.raises(PersistenceError):
            timestamp_dir(blocker)


class TestCheckpointWriter:

    def test_inline_run(self, tmp_path):
        with CheckpointWriter() as writer:
            run_dir = writer.start({"seed": 1}, run_dir=str(tmp_path / "run"), background=False)
            assert writer.background is False
            writer.write_generation({"generation": 0.0, "avg_fitness": 0.25})
            writer.save_many([(tmp_path / "run" / "a.json", {"k": 1})])
        assert json.loads((tmp_path / "run" / "config.json").read_text()) == {"seed": 1}
        assert (tmp_path / "run" / "generations.csv").read_text().splitlines()[0] == "generation,avg_fitness"
        assert read_json(tmp_path / "run" / "a.json") == {"k": 1}
        assert run_dir == str(tmp_path / "run")

    def test_failed_save_is_not_fatal(self, tmp_path):
        writer = CheckpointWriter()
        blocker = tmp_path / "file"
        blocker.write_text("x")
        writer.save_document(blocker / "under_a_file.json", {"k": 1})
        writer.close()

    def test_rows_without_run_are_dropped(self):
        writer = CheckpointWriter()
        writer.write_generation({"generation": 0.0})
        writer.close()


class TestSanity:

    def test_all_finite(self):
        assert all_finite([0.0, 1.5])
        assert not all_finite([0.0, float("inf")])

    def test_population_scan(self, ff_kwargs):
        pop = [AgentPolicy(i, FeedforwardBrain(seed=i, **ff_kwargs)) for i in range(3)]
        assert runtime_sanity_check(pop) == []
        pop[1].brain.parameters()["b_h1"][0] = float("nan")
        assert non_finite_params(pop[1].brain.parameters()) == ["b_h1"]
        assert runtime_sanity_check(pop) == [1]
