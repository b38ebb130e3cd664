"""
Setup script for relaychat - phone-addressed messaging through a thin relay.

This package provides:
- A WebSocket relay that forwards messages between registered phones
- An offline pending queue drained when the recipient registers
- A client connection with event observers
- Encrypted, file-per-conversation local history
- Inline image and audio attachments
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='relaychat',
    version='1.0.0',
    description='Phone-addressed text, image and audio messaging through a WebSocket relay',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.11',
    install_requires=[
        'cryptography>=42.0.4',
        'websockets>=13.0',
        'aiofiles>=23.2.1',
        'rich>=13.7.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'relaychat=relaychat.main:main',
            'relaychat-server=relaychat.server:main',
        ],
    },
)
