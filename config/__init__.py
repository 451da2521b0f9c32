# Avatar Voice Agent - Config Package
