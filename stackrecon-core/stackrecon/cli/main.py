def main():
    from .profiles import set_and_remove_profile_from_sys_argv

    # the profile needs to be set before stackrecon.config is imported
    set_and_remove_profile_from_sys_argv()

    from .stackrecon import stackrecon

    stackrecon()


if __name__ == "__main__":
    main()
