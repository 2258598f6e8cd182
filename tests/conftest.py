from guildbank.testing.fixtures import frozen_clock, memory_app  # noqa: F401
