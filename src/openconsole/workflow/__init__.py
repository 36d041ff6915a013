"""Workflow layer: actions, dispatcher and result records."""

from openconsole.workflow.actions import ActionContext, actions
from openconsole.workflow.dispatcher import Dispatcher, expand_records
from openconsole.workflow.views import ActionParams, ActionResult

__all__ = ["ActionContext", "ActionParams", "ActionResult", "Dispatcher", "actions", "expand_records"]
