from setuptools import find_packages, setup


if __name__ == '__main__':
    setup(
        name='MPC-PathTracker',
        version=1.0,
        description='Receding-horizon path-tracking MPC for a kinematic bicycle, exposed through an NLP solver callback contract.',
        author='Mohamed-Khalil Bouzidi',
        author_email='mohamed-khalil.bouzidi@continental.com',
        license='Apache License 2.0',
        packages=find_packages(exclude=['tests', 'tests.*']),
        package_data={'controller': ['configs/*.yaml']},
        python_requires='>=3.8',
        install_requires=[
            'casadi',
            'numpy',
            'scipy',
            'omegaconf',
        ],
        extras_require={
            'test': ['pytest'],
        },
    )
