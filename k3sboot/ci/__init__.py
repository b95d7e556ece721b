"""
Helpers for a local Jenkins CI server run with docker-compose.

A master container ``jenkins-master`` and SSH agents
``jenkins-agent-<i>`` authenticate with one key pair generated by
:func:`k3sboot.ci.keys.generate_agent_key`.
"""
