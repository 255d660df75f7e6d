"""Shared builders for engine and resource tests."""

import json

from otcprovider.clients.factory import ClientFactory
from otcprovider.engine.coercion import instance_from_desired, instance_from_state
from otcprovider.engine.context import OperationContext


def make_context(descriptor, settings, credentials, desired, *, prior=None, operation="update", clock=None):
    """OperationContext over the given raw attribute maps."""
    fields = descriptor.fields()
    desired_instance, diags = instance_from_desired(descriptor.name, fields, desired)
    assert [d for d in diags if d.is_error] == []
    prior_instance = instance_from_state(descriptor.name, fields, prior)
    if prior_instance is not None:
        desired_instance.id = prior_instance.id
    kwargs = {}
    if clock is not None:
        kwargs.update(clock=clock, sleep=clock.sleep)
    return OperationContext(
        clients=ClientFactory(settings, credentials, sleep=kwargs.get("sleep")),
        region=settings.region,
        desired=desired_instance,
        descriptor=descriptor,
        operation=operation,
        prior=prior_instance,
        **kwargs,
    )


def request_json(route):
    """Decoded JSON body of the last call on a respx route."""
    return json.loads(route.calls.last.request.content)
