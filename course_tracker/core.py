# core.py
# Description: Composition root wiring the local store, session, sync engine and query facade.
#
# Imports
import asyncio
from pathlib import Path
from typing import Optional, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from course_tracker.config import get_database_path, get_setting, load_settings
from course_tracker.DB.Course_Tracker_DB import CourseTrackerDB
from course_tracker.DB.Entity_Repository import EntityRepository
from course_tracker.Logging_Config import setup_logger
from course_tracker.Query.queries import CourseTrackerQueries
from course_tracker.session import AppSession
from course_tracker.Sync.Sync_Engine import SyncEngine
from course_tracker.Sync.Sync_Triggers import AppStateMonitor, ConnectivityMonitor, SyncTriggerChannel, TriggerReason
#
#######################################################################################################################
#
# Functions:

class CourseTrackerCore:
    """
    Everything the UI talks to, built once per process.

    `queries` is the UI's entry point. Connectivity and app-state changes are
    reported through `connectivity.update()` and `app_state.update()`; both feed
    the trigger channel the background sync loop consumes.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None, session: Optional[AppSession] = None):
        self.db = CourseTrackerDB(db_path or get_database_path())
        self.repository = EntityRepository(self.db)
        self.session = session if session is not None else AppSession()
        self.sync_engine = SyncEngine(self.repository, self.session.api,
                                      user_id_provider=lambda: self.session.user_id)
        self.queries = CourseTrackerQueries(self.session, self.repository, self.sync_engine)
        self.triggers = SyncTriggerChannel()
        self.connectivity = ConnectivityMonitor(self.triggers)
        self.app_state = AppStateMonitor(self.triggers)
        self._sync_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    def start(self):
        """Starts the background sync loop and, if [sync] sync_on_start is set, queues a startup sync."""
        if not self.is_running:
            self._sync_task = asyncio.create_task(self.sync_engine.run_forever(self.triggers))
            self._sync_task.add_done_callback(self._on_sync_task_done)
        if get_setting("sync", "sync_on_start", True, bool) and self.session.is_authenticated:
            self.triggers.send(TriggerReason.STARTUP)

    @staticmethod
    def _on_sync_task_done(task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Sync loop stopped; further triggers will not run: {exc}")

    async def close(self):
        """Stops the sync loop and releases the HTTP client and database, even if the loop had died."""
        try:
            if self._sync_task is not None:
                self._sync_task.cancel()
                try:
                    await self._sync_task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Sync loop had failed before shutdown")
                finally:
                    self._sync_task = None
        finally:
            try:
                await self.session.close()
            finally:
                self.db.close_connection()
        logger.info("Course tracker core closed")


def create_core(db_path: Optional[Union[str, Path]] = None, session: Optional[AppSession] = None,
                configure_logging: bool = True) -> CourseTrackerCore:
    """Loads config, sets up logging and opens the store. Call `start()` from inside the event loop."""
    load_settings()
    if configure_logging:
        setup_logger()
    core = CourseTrackerCore(db_path=db_path, session=session)
    logger.info(f"Course tracker core ready (store: {core.db.db_path_str}, api: {core.session.base_url})")
    return core

#
# End of core.py
#######################################################################################################################
