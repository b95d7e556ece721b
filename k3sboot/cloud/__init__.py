"""
Cloud providers.

A provider maps the declarations of :mod:`k3sboot.cloud.resources` to the
API of one cloud. It only knows how to find, create, update and delete
single records; the order and the check-then-act logic live in
:class:`k3sboot.cloud.builder.ClusterBuilder`.
"""


class BuilderError(Exception):
    """Raise a custom error if the build fails"""


class InstanceNotFound(Exception):
    """Raises a custom error if machine doesn't exist."""


class Provider:
    """The interface every cloud provider implements.

    Records returned by ``find`` and ``create`` are whatever the cloud SDK
    returns; only the provider looks inside them. ``state`` maps resource
    kinds to the records found or created so far.
    """

    name = None

    def find(self, resource):
        """Return the live record of ``resource`` or None"""
        raise NotImplementedError

    def create(self, resource, state):
        """Create ``resource`` and return its record"""
        raise NotImplementedError

    def drift(self, resource, record):  # pylint: disable=unused-argument,no-self-use
        """Return what a live record lacks compared to the declaration.

        An empty list means the record is in the declared state.
        """
        return []

    def update(self, resource, record, state):  # pylint: disable=unused-argument,no-self-use
        """Bring an existing record to the declared state"""
        return record

    def delete(self, resource, record):
        """Delete a live record"""
        raise NotImplementedError

    def wait_for_instance(self, record, timeout=300):
        """Block until the instance runs and return its fresh record"""
        raise NotImplementedError

    def addresses(self, record):
        """Return ``(public_ip, private_ip)`` of an instance record"""
        raise NotImplementedError


def get_provider(config):
    """Instantiate the provider named in the configuration"""
    if config["provider"] == "aws":
        from k3sboot.cloud.aws import AWSProvider  # pylint: disable=import-outside-toplevel
        return AWSProvider(config)

    if config["provider"] == "openstack":
        from k3sboot.cloud.openstack import OpenStackProvider  # pylint: disable=import-outside-toplevel
        return OpenStackProvider(config)

    raise ValueError("unknown provider %s" % config["provider"])
