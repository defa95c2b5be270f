"""Provision and operate Minecraft server containers on a Docker engine."""

__version__ = "0.1.0"
