# arena_evo/evolution/__init__.py
from __future__ import annotations

from .controller import EvolutionController, GenerationPhase, GenerationReport
from .fitness import AgentFitness, composite_fitness, rank
from .population import Population

__all__ = ["AgentFitness", "EvolutionController", "GenerationPhase", "GenerationReport",
           "Population", "composite_fitness", "rank"]
