"""
A simple CLI for running the server and the scheduled jobs. The jobs are
meant to be run from cron:

groupkeeper expire
groupkeeper notify first
groupkeeper notify second
groupkeeper expire-invitations
groupkeeper expire-requests
groupkeeper deactivate
groupkeeper consolidate [live]

`groupkeeper run dev` starts a throwaway Postgres container and needs the `dev`
extra (`pip install groupkeeper[dev]`).
"""

import asyncio
import os
import sys
import time
from multiprocessing import Process

import uvicorn
from structlog import get_logger

USAGE = (
    "Supported commands: groupkeeper run dev, groupkeeper run prod, "
    "groupkeeper setup, groupkeeper expire, groupkeeper notify first|second, "
    "groupkeeper expire-invitations, groupkeeper expire-requests, "
    "groupkeeper deactivate, groupkeeper consolidate [live]"
)


def run_server(**kwargs):
    for k, v in kwargs.items():
        os.environ[k] = v

    uvicorn.run("groupkeeper.api.app:app", host="0.0.0.0")


def setup():
    from groupkeeper.config.settings import Settings

    Settings().sync_manager().create_all()


async def run_job(command: str, argument: str | None):
    from groupkeeper.config.settings import Settings
    from groupkeeper.service import expirations, sync

    settings = Settings()
    manager = settings.async_manager()
    identity = settings.identity_client()
    sender = settings.notification_sender()
    log = get_logger().bind(job=command)

    try:
        match command:
            case "expire":
                result = await expirations.expire_memberships(
                    identity=identity, sender=sender, manager=manager, log=log
                )
            case "notify":
                if argument not in ("first", "second"):
                    print(USAGE)
                    exit(1)
                result = await expirations.expiration_notification(
                    first=argument == "first", sender=sender, manager=manager, log=log
                )
            case "expire-invitations":
                result = await expirations.expire_invitations(manager=manager, log=log)
            case "expire-requests":
                result = await expirations.expire_requests(manager=manager, log=log)
            case "deactivate":
                result = await expirations.deactivate_empty_groups(
                    manager=manager, log=log
                )
            case "consolidate":
                result = await sync.consolidate(
                    identity=identity,
                    manager=manager,
                    log=log,
                    dry_run=argument != "live",
                )
            case _:
                print(USAGE)
                exit(1)
    finally:
        await identity.aclose()
        await sender.aclose()
        await manager.dispose()

    await log.ainfo("job.finished", result=result)


def main():
    try:
        command = sys.argv[1]
    except IndexError:
        print(USAGE)
        exit(1)

    argument = sys.argv[2] if len(sys.argv) > 2 else None

    if command == "run" and argument == "dev":
        from testcontainers.postgres import PostgresContainer

        with PostgresContainer() as container:
            print(
                f"Container details: username={container.username}, password={container.password}, port={container.get_exposed_port(container.port)}"
            )

            environment = {
                "GROUPKEEPER_DATABASE_TYPE": "postgres",
                "GROUPKEEPER_DATABASE_USER": container.username,
                "GROUPKEEPER_DATABASE_PASSWORD": container.password,
                "GROUPKEEPER_DATABASE_PORT": str(
                    container.get_exposed_port(container.port)
                ),
                "GROUPKEEPER_DATABASE_HOST": "localhost",
                "GROUPKEEPER_DATABASE_DB": container.dbname,
                "GROUPKEEPER_DATABASE_ECHO": "False",
            }

            for k, v in environment.items():
                os.environ[k] = v

            setup()

            background_process = Process(target=run_server, kwargs=environment)
            background_process.start()

            while True:
                time.sleep(1)

    if command == "run" and argument == "prod":
        setup()
        run_server()
        exit(0)

    if command == "setup":
        setup()
        print("Setup complete")
        exit(0)

    asyncio.run(run_job(command, argument))
