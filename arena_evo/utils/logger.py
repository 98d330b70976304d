# arena_evo/utils/logger.py
import sys

from loguru import logger

from .. import config

PALETTE = {
    "brain": "magenta",
    "trainer": "cyan",
    "evolution": "green",
    "checkpoint": "yellow",
    "loop": "blue",
}

LEVEL_PER_COMPONENT = {
    "brain": "INFO",
    "loop": "INFO",
}


def component_filter(record):
    comp = record["extra"].get("component", "")
    min_level = logger.level(LEVEL_PER_COMPONENT.get(comp, config.LOG_LEVEL.upper())).no
    return record["level"].no >= min_level


def formatter(record):
    comp = record["extra"].get("component", "")
    agent = record["extra"].get("agent", "")
    colour = PALETTE.get(comp, "white")

    if agent != "":
        return (
            "{time:HH:mm:ss} | "
            f"<{colour}>{comp:<11} | agent {agent!s:<5}</> | "
            "<level>{message}</level>\n"
        )
    return (
        "{time:HH:mm:ss} | "
        f"<{colour}>{comp:<11}</> | "
        "<level>{message}</level>\n"
    )


logger.remove()
logger.add(sys.stderr, format=formatter, filter=component_filter, colorize=True)
