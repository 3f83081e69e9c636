"""
Setup script for Router Monitor.

Usage:
    pip install .
    pip install -e .[test]

Installs the ``router-monitor`` command.
"""
from setuptools import setup

PACKAGES = [
    # Our packages
    'monitor',
    'storage',
    'config',
    'app',
]

INSTALL_REQUIRES = [
    'requests>=2.28',
    'urllib3>=1.26',
    'pysnmp>=7.1',
    'prometheus-client>=0.17',
]

EXTRAS_REQUIRE = {
    'test': [
        'pytest>=7.0',
    ],
}

setup(
    name='router-monitor',
    version='1.0.0',
    description='Router traffic monitoring service with threshold and connectivity alerts',
    python_requires='>=3.9',
    packages=PACKAGES,
    py_modules=['router_monitor'],
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    entry_points={
        'console_scripts': [
            'router-monitor=router_monitor:main',
        ],
    },
)
