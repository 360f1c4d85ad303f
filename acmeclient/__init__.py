"""ACME protocol client.

This package is a synchronous client for the `ACME protocol`_ (draft v1
resources: ``new-reg``, ``new-authz``, ``new-cert`` and ``revoke-cert``).

.. _`ACME protocol`: https://ietf-wg-acme.github.io/acme

"""
from acmeclient.client import Client
from acmeclient.resources import Certificate
from acmeclient.resources import CertificateRequest

__all__ = ['Client', 'Certificate', 'CertificateRequest']
