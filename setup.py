from setuptools import find_packages
from setuptools import setup

version = '0.1.0'

install_requires = [
    'cryptography>=43.0.0',
    'josepy>=2.0.0, <3',
    # probe_sni still goes through pyOpenSSL's SSL.Connection.
    'PyOpenSSL>=25.0.0',
    'pyrfc3339',
    'requests>=2.20.0',
]

test_extras = [
    'pytest',
    'pytest-xdist',
]

setup(
    name='acme-client',
    version=version,
    description='Client for the ACME v1 certificate issuance protocol',
    license='Apache License 2.0',
    python_requires='>=3.9',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
        'Topic :: Internet :: WWW/HTTP',
        'Topic :: Security',
    ],

    packages=find_packages(include=['acmeclient', 'acmeclient.*']),
    include_package_data=True,
    package_data={'acmeclient._internal.tests': ['testdata/*']},
    install_requires=install_requires,
    extras_require={
        'test': test_extras,
    },
)
