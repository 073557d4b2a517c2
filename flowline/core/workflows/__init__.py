"""Workflow execution: the engine and the ``${path}`` resolver it uses.

Import from the submodules (``flowline.core.workflows.engine``,
``flowline.core.workflows.resolver``); the task model imports the resolver
while this package is still initialising.
"""
