"""
Base Celery task classes with enhanced logging and error handling.
"""
import logging

from celery import Task

from apps.core.sentry_utils import add_breadcrumb, capture_exception, start_transaction

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class with logging and Sentry integration.

    Logs start, completion and failure of every run, leaves Sentry
    breadcrumbs, and reports failures with the task's identifiers.
    Positional arguments are logged by type only.
    """

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name
        transaction = start_transaction(name=f"task.{task_name}", op="celery.task")

        logger.info(
            f"Task started: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'task_args': self._describe_args(args),
                'task_kwargs': sorted(kwargs),
            }
        )
        add_breadcrumb(
            category="task",
            message=f"Task started: {task_name}",
            data={'task_id': task_id, 'task_name': task_name},
        )

        try:
            result = super().__call__(*args, **kwargs)
        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                },
                exc_info=True
            )
            capture_exception(exc, task={'task_id': task_id, 'task_name': task_name})
            if transaction:
                transaction.set_status("internal_error")
                transaction.finish()
            raise

        logger.info(
            f"Task completed: {task_name}",
            extra={'task_id': task_id, 'task_name': task_name}
        )
        if transaction:
            transaction.set_status("ok")
            transaction.finish()
        return result

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task retry: {self.name}",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'exception': str(exc),
                'retry_count': self.request.retries,
            }
        )
        add_breadcrumb(
            category="task",
            message=f"Task retry: {self.name}",
            level="warning",
            data={'task_id': task_id, 'retry_count': self.request.retries},
        )

    @staticmethod
    def _describe_args(args):
        return [type(arg).__name__ for arg in args]
