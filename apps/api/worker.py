"""RQ worker process entrypoint for catalog maintenance jobs."""

from rq import Worker

from services.maintenance_queue import MAINTENANCE_QUEUE_NAME, get_redis_connection


def main():
    redis_conn = get_redis_connection()
    worker = Worker([MAINTENANCE_QUEUE_NAME], connection=redis_conn)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
