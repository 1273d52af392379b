from mediajobs.repositories.jobs import InMemoryJobsRepository, PostgresJobsRepository
from mediajobs.repositories.reminders import InMemoryRemindersRepository, PostgresRemindersRepository
from mediajobs.repositories.tracks import InMemoryTracksRepository, PostgresTracksRepository

__all__ = [
    "InMemoryJobsRepository",
    "PostgresJobsRepository",
    "InMemoryRemindersRepository",
    "PostgresRemindersRepository",
    "InMemoryTracksRepository",
    "PostgresTracksRepository",
]
