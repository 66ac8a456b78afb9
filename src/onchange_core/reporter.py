"""Change-notification rendering."""

from onchange_core.models import PathVariables
from onchange_core.notifier import OnchangeNotifier
from onchange_core.template import PathTemplate


class Reporter:
    """Render the message template for a change and hand it to the notifier."""

    def __init__(self, template: PathTemplate, notifier: OnchangeNotifier):
        self.template = template
        self.notifier = notifier

    def report(self, variables: PathVariables) -> str | None:
        """Emit the change line; an empty template reports nothing."""
        if self.template.is_empty:
            return None
        message = self.template.render(variables)
        self.notifier.changed(message)
        return message
