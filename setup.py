from setuptools import setup, find_packages

setup(
    name='rclevel',
    version='0.1.0',
    author='Virgil',
    author_email='virgil@example.com',
    description='Decode PS3 engine/gameplay/vram level files into a lossless in-memory level',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    url='https://github.com/example/rclevel',
    packages=find_packages(include=['rclevel', 'rclevel.*']),
    install_requires=[
        'numpy>=1.20.0',
        'opencv-python>=4.5.0',
        'trimesh>=3.10.0',
    ],
    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-cov>=4.0.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'rclevel=rclevel.cli:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'License :: Other/Proprietary License',
        'Operating System :: OS Independent',
        'Topic :: Games/Entertainment',
        'Topic :: Multimedia :: Graphics :: 3D Modeling',
    ],
    python_requires='>=3.8',
    include_package_data=True,
    package_data={
        'rclevel': ['py.typed'],
    },
)
