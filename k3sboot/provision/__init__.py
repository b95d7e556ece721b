"""

.. _userdata:

k3sboot.provision.userdata
--------------------------

bootstrap-k3s-server-ubuntu.sh
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

This script is executed on the server on first boot. It installs k3s,
waits until the node is Ready, installs the GitOps controller and writes
``cluster-info.txt`` for the operator. Every step checks whether its
result is already there, so the script can be run again by hand after a
failure.

The script needs ``/etc/k3sboot/k3sboot.env`` to run properly.
This file includes all the information on the cluster and
written via ``cloud-init`` on the first boot.
See :py:class:`k3sboot.provision.cloud_init.ServerInit`

.. literalinclude:: ../k3sboot/provision/userdata/bootstrap-k3s-server-ubuntu.sh
   :language: shell

"""
