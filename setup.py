import os
from sdft import __name__, __version__
from setuptools import setup, find_packages

BASE = os.path.dirname(__file__)
with open(os.path.join(BASE, 'README.md'), encoding='utf-8') as fh:
    long_description = fh.read()


setup(
    name=__name__,
    version=__version__,
    description="Secure direct file transfer through a TLS rendezvous server",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords="file transfer tls relay",
    license='MIT',
    python_requires='>=3.8',
    packages=find_packages(exclude=('tests',)),
    zip_safe=False,
    entry_points={
        'console_scripts': [
            'sdft=sdft.cli:main',
            'sdft-server=sdft.cli:server_main',
        ],
    },
    install_requires=[
        'aiohttp>=3.8',
        'appdirs>=1.4.3',
        'cryptography>=3.1',
        'prometheus_client>=0.7.1',
        'pyyaml>=5.3.1',
        'tqdm>=4.40',
    ],
    extras_require={
        'lint': [
            'pylint'
        ],
        'test': [
            'coverage',
            'pytest',
        ],
    },
    classifiers=[
        'Framework :: AsyncIO',
        'Intended Audience :: End Users/Desktop',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
        'Topic :: Communications :: File Sharing',
        'Topic :: Internet',
        'Topic :: Utilities',
    ],
)
