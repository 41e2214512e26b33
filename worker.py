"""
RQ worker entry point — used by the worker process in Procfile.

Runs gamification.jobs functions (bonus runs, leaderboard rollover, payouts).
"""
from rq import Queue, Worker

from gamification.extensions import rq_connection
from gamification.logging_config import configure_logging

if __name__ == '__main__':
    configure_logging()
    Worker([Queue(connection=rq_connection)], connection=rq_connection).work()
