"""Example usage of the ACME v1 client with an http-01 challenge.

Workflow:
    - Register an account and agree to the subscriber agreement
    - Ask for an authorization for one domain
    - Publish the http-01 file under a web root served on port 80
    - Poll the challenge until the authority made its decision
    - Issue, save and revoke the certificate

The polling loop lives here: the client never waits on its own.
"""
import logging
import os
import time

from cryptography.hazmat.primitives.asymmetric import rsa

from acmeclient import client
from acmeclient import errors
from acmeclient import messages
from acmeclient import resources

# Boulder listening locally.
ENDPOINT = 'http://127.0.0.1:4000'

USER_AGENT = 'acme-client-example'

ACC_KEY_BITS = 2048

DOMAIN = 'client.example.com'

CONTACT = 'mailto:cert-admin@example.com'

# Directory served as http://DOMAIN/ by a web server of your choice.
WEBROOT = '/var/www/html'

POLL_ATTEMPTS = 10

POLL_INTERVAL = 2


def publish_http01(challenge, webroot=WEBROOT):
    """Write the http-01 file where the web server serves it from."""
    path = os.path.join(webroot, challenge.filename)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as fd:
        fd.write(challenge.file_content)
    return path


def wait_for_challenge(challenge, attempts=POLL_ATTEMPTS, interval=POLL_INTERVAL):
    """Poll ``challenge`` until the authority reached a decision."""
    for _ in range(attempts):
        if challenge.verify_status() not in (messages.STATUS_PENDING,
                                             messages.STATUS_PROCESSING):
            return challenge.status
        time.sleep(interval)
    raise errors.Error('Challenge still undecided after {0} attempts'.format(attempts))


def example_http():
    """Run the whole http-01 issuance for `DOMAIN`."""
    acc_key = rsa.generate_private_key(public_exponent=65537, key_size=ACC_KEY_BITS)
    acme = client.Client(acc_key, endpoint=ENDPOINT, user_agent=USER_AGENT,
                         connection_options={'open_timeout': 10, 'timeout': 30})

    regr = acme.register(CONTACT)
    regr.agree_terms()

    authz = acme.authorize(DOMAIN)
    http01 = authz.http01
    if http01 is None:
        raise errors.Error('http-01 challenge was not offered by the authority')

    path = publish_http01(http01)
    try:
        http01.request_verification()
        status = wait_for_challenge(http01)
    finally:
        os.remove(path)
    if status != 'valid':
        raise errors.Error('Validation failed: {0}'.format(http01.error))

    request = resources.CertificateRequest(common_name=DOMAIN)
    cert = acme.new_certificate(request)
    with open('privkey.pem', 'wb') as fd:
        fd.write(request.private_key_pem)
    with open('fullchain.pem', 'wb') as fd:
        fd.write(cert.fullchain_to_pem())

    acme.revoke_certificate(cert)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    example_http()
